from tortoise import fields, models
import uuid


class ApiUser(models.Model):
    """Maps a bearer API key to the owning user id."""
    id = fields.CharField(max_length=255, primary_key=True)
    api_key = fields.CharField(max_length=128, unique=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "api_users"


class Sheet(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    user_id = fields.CharField(max_length=255)
    name = fields.CharField(max_length=255)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "sheets"
        indexes = [
            ("user_id",),  # Owner lookups
        ]


class Column(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    sheet = fields.ForeignKeyField("models.Sheet", related_name="columns")
    title = fields.CharField(max_length=255, default="")
    position = fields.IntField()
    data_type = fields.CharField(max_length=32, default="text")
    prompt = fields.TextField(null=True) # Instruction handed to the enricher for this column

    class Meta:
        table = "columns"
        unique_together = (("sheet", "position"),)
        ordering = ["position"]
