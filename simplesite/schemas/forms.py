"""Form data schemas.

Fields default to empty values: a form is rendered from the defaults and a
submission overlays the posted fields onto them.
"""
from pydantic import BaseModel


class RegistrationFormData(BaseModel):
    """Registration form."""

    username: str = ""
    email: str = ""
    password: str = ""
    accept_tos: bool = False


class LoginFormData(BaseModel):
    """Login form."""

    username: str = ""
    password: str = ""


class PostFormData(BaseModel):
    """Post create/edit form."""

    title: str = ""
    content: str = ""


class RevisionRow(BaseModel):
    id: str
    created: str
    active: bool = False


class RevisionsFormData(BaseModel):
    """Revision list with the publish and diff operations."""

    revisions: list[RevisionRow] = []
    op: str = ""
    diff0: str = ""
    diff1: str = ""
