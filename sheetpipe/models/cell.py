from tortoise import fields, models
import uuid


class Cell(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    sheet = fields.ForeignKeyField("models.Sheet", related_name="cells")
    user_id = fields.CharField(max_length=255, null=True) # Last writer
    row_index = fields.IntField()
    col_index = fields.IntField()
    content = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "cells"
        # The upsert conflict target: one record per grid position
        unique_together = (("sheet", "row_index", "col_index"),)
        indexes = [
            ("sheet_id", "row_index"),  # Row reads for enrichment context
        ]
