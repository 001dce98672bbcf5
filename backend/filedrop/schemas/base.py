"""camelCase base models shared by the file API schemas.

The JSON surface mirrors what the upload UI sends and reads (``fileId``,
``totalChunks``, ``originalName``); Python code keeps snake_case names.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies and ``{success, ...}`` envelopes. Either casing is accepted on input."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CamelORMModel(CamelModel):
    """File records built straight from ``FileRecord`` rows."""
    model_config = {
        **CamelModel.model_config,
        "from_attributes": True,
    }
