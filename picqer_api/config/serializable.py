import logging
from typing import Mapping

from picqer_api.type_defs import is_json_object, JsonObject, JsonValue

logger = logging.getLogger(__name__)


class Serializable:
    _required: tuple[str, ...] = ()

    def _annotations(self) -> dict[str, object]:
        annotations: dict[str, object] = {}
        for cls in reversed(type(self).mro()):
            cls_annotations = getattr(cls, "__annotations__", None)
            if isinstance(cls_annotations, dict):
                annotations.update(cls_annotations)
        return {key: hint for key, hint in annotations.items() if not key.startswith("_")}

    def to_dict(self) -> JsonObject:
        result: JsonObject = {}
        for key in self.get_all_keys():
            if key.startswith("_"):
                continue
            value = getattr(self, key, None)
            if isinstance(value, Serializable):
                result[key] = value.to_dict()
            elif value is not None:
                result[key] = value
        return result

    def from_dict(self, data: Mapping[str, JsonValue]) -> None:
        for key in self._annotations():
            value = data.get(key, getattr(self, key, None))

            try:
                existing_attr = getattr(self, key)
            except AttributeError:
                logger.warning(f"{key} not in {self.__class__.__name__}. Skipping...")
                continue

            if isinstance(existing_attr, Serializable):
                if not is_json_object(value):
                    logger.warning(
                        f"Expected dict for {key} in {self.__class__.__name__}, got {type(value)}. Skipping..."
                    )
                    continue
                existing_attr.from_dict(value)
            else:
                setattr(self, key, value)

        self.validate()

    def validate(self) -> None:
        for key in self._required:
            if not getattr(self, key, None):
                logger.warning(
                    f"Configuration value '{key}' is missing or empty in {self.__class__.__name__}"
                )

    def get_all_keys(self) -> set[str]:
        instance_keys = set(self.__dict__.keys())
        annotation_keys = set(self._annotations().keys())
        return instance_keys | annotation_keys
