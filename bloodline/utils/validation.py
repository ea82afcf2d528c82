from typing import Any, Dict, List, Mapping, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from bloodline.errors import InvalidInput
from bloodline.utils.result import Err, Ok, Result

M = TypeVar("M", bound=BaseModel)


def validation_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into JSON-safe dicts"""
    return [
        {
            "loc": [str(part) for part in error["loc"]],
            "msg": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


def parse_input(
    model: Type[M], raw: Union[M, Mapping[str, Any], None]
) -> Result[M, InvalidInput]:
    """Accept a ready model, a plain mapping or ``None`` (all defaults)."""
    if isinstance(raw, model):
        return Ok(raw)
    try:
        return Ok(model.model_validate(raw if raw is not None else {}))
    except ValidationError as e:
        return Err(InvalidInput(errors=validation_errors(e)))
