"""Transformer interface and registry.

A transformer is a pure function from (content, parameters) to a
TransformResult. There is exactly one transformer per EditMode; the engine
looks it up in a TransformerRegistry rather than branching on the mode.
"""

from __future__ import annotations

import inspect
import logging
import re
from abc import ABC, abstractmethod
from importlib.metadata import entry_points
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import EditError, ErrorKind
from .models import EditMode, TransformResult

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "smalledit.transformers"


class TextTransformer(ABC):
    """Base class for mode transformers.

    Subclasses must:
    1. Set class attributes (mode, params_type)
    2. Implement transform() without any I/O

    Example:
        class UpperTransformer(TextTransformer):
            mode = EditMode.SUBSTITUTE
            params_type = SubstituteParams

            def transform(self, content: str, params: SubstituteParams) -> TransformResult:
                new = content.upper()
                return TransformResult.ok(new, count_changed_lines(content, new))
    """

    mode: ClassVar[EditMode]
    params_type: ClassVar[type[BaseModel]]

    @abstractmethod
    def transform(self, content: str, params: Any) -> TransformResult:
        """Compute the new content.

        Args:
            content: Current file content
            params: Instance of ``params_type``

        Returns:
            TransformResult.ok(...) or TransformResult.failure(...)
        """

    def run(self, content: str, params: Any) -> TransformResult:
        """Call transform() and turn any exception into an explicit failure.

        Regex errors raised at match time, EditErrors and anything unexpected
        become a failed TransformResult; nothing escapes unstructured.
        """
        try:
            return self.transform(content, params)
        except EditError as e:
            return TransformResult.failure(e.kind, e.message)
        except (re.error, ValueError) as e:
            return TransformResult.failure(ErrorKind.MALFORMED_PATTERN, str(e))
        except Exception as e:
            logger.exception(f"{type(self).__name__} crashed")
            return TransformResult.failure(
                ErrorKind.MALFORMED_PATTERN, f"{type(e).__name__}: {e}"
            )


class TransformerRegistry(BaseModel):
    """Registry mapping each EditMode to its transformer."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    transformers: dict[EditMode, TextTransformer] = Field(default_factory=dict)

    def register(self, transformer: TextTransformer) -> None:
        """Register (or replace) the transformer for its mode."""
        if transformer.mode in self.transformers:
            logger.info(
                f"Replacing {self.transformers[transformer.mode].__class__.__name__} "
                f"with {transformer.__class__.__name__} for mode '{transformer.mode.value}'"
            )
        self.transformers[transformer.mode] = transformer

    def get(self, mode: EditMode) -> TextTransformer:
        """Get the transformer for ``mode``."""
        if mode not in self.transformers:
            raise ValueError(f"No transformer registered for mode: {mode.value}")
        return self.transformers[mode]

    def list_modes(self) -> list[EditMode]:
        return list(self.transformers.keys())

    def has(self, mode: EditMode) -> bool:
        return mode in self.transformers

    def discover_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register transformers published by installed packages.

        Each entry point must load a TextTransformer subclass; it replaces the
        built-in transformer for the same mode.

        Returns:
            Number of transformers registered
        """
        discovered = 0
        for entry_point in entry_points(group=group):
            try:
                transformer_class = entry_point.load()
            except Exception:
                logger.warning(f"Skipping transformer entry point {entry_point.name!r}")
                continue
            if not (
                inspect.isclass(transformer_class)
                and issubclass(transformer_class, TextTransformer)
            ):
                logger.warning(f"Entry point {entry_point.name!r} is not a TextTransformer")
                continue
            self.register(transformer_class())
            discovered += 1
        return discovered


def create_default_registry() -> TransformerRegistry:
    """Create a TransformerRegistry with the four built-in transformers.

    Each call returns an independent registry, so tests can register
    replacements without affecting each other.
    """
    from .transforms_columns import ColumnTransformer
    from .transforms_lines import LineEditTransformer
    from .transforms_text import LiteralReplaceTransformer, SubstituteTransformer

    registry = TransformerRegistry()
    registry.register(SubstituteTransformer())
    registry.register(LineEditTransformer())
    registry.register(ColumnTransformer())
    registry.register(LiteralReplaceTransformer())
    return registry
