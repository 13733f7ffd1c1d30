from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing created_at / updated_at.

    Every billing model inherits from it so history views can order
    records newest first without extra Meta boilerplate.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]
