# src/manuscript_pipeline/pipeline/registry.py — v1
"""Stage registry — dynamic loading of the DAG's stage classes.

Loads stage classes from STAGE_REGISTRY config, validates that every
declared dependency is registered, and exposes the dependency map the
DAG builder and scheduler work from.
"""

from __future__ import annotations

import importlib
import logging

from manuscript_pipeline.config.stages import DAG_VERSION, STAGE_GROUPS, STAGE_REGISTRY
from manuscript_pipeline.core.models import SubmitOptions
from manuscript_pipeline.pipeline.dag_builder import ancestors
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when stage loading or validation fails."""


class StageRegistry:
    """Registry of all stages of one DAG version.

    Unlike optional plugins, every configured stage must load: a DAG with
    a missing stage is a different DAG, so load errors propagate.
    """

    def __init__(self, dag_version: int = DAG_VERSION) -> None:
        self._stages: dict[str, BaseStage] = {}
        self.dag_version = dag_version

    @classmethod
    def default(cls) -> StageRegistry:
        """Registry loaded from STAGE_REGISTRY and validated."""
        registry = cls()
        registry.load_all()
        errors = registry.validate_dependencies()
        if errors:
            raise RegistryError("; ".join(errors))
        return registry

    @property
    def stages(self) -> dict[str, BaseStage]:
        return dict(self._stages)

    @property
    def stage_ids(self) -> list[str]:
        return sorted(self._stages)

    def load_all(self, class_paths: list[str] | None = None) -> None:
        """Import and instantiate every configured stage class."""
        for class_path in class_paths or STAGE_REGISTRY:
            stage = _import_stage(class_path)
            self.register(stage)
            logger.debug("Loaded stage: %s v%s", stage.stage_id, stage.version)
        logger.info("Registry loaded %d stages (DAG v%d)", len(self._stages), self.dag_version)

    def register(self, stage: BaseStage) -> None:
        """Manually register a stage instance."""
        if stage.stage_id in self._stages:
            logger.warning("Overwriting existing stage: %s", stage.stage_id)
        self._stages[stage.stage_id] = stage

    def get(self, stage_id: str) -> BaseStage | None:
        return self._stages.get(stage_id)

    def get_or_raise(self, stage_id: str) -> BaseStage:
        stage = self._stages.get(stage_id)
        if stage is None:
            raise RegistryError(f"Stage '{stage_id}' not found in registry")
        return stage

    def validate_dependencies(self) -> list[str]:
        """Return error messages for dependencies that are not registered."""
        errors: list[str] = []
        for stage_id, stage in self._stages.items():
            for dep in stage.dependencies:
                if dep not in self._stages:
                    errors.append(
                        f"Stage '{stage_id}' depends on '{dep}' which is not registered"
                    )
        return errors

    def get_dependency_map(self) -> dict[str, list[str]]:
        """Return stage_id -> list of dependency stage ids."""
        return {sid: list(stage.dependencies) for sid, stage in self._stages.items()}

    def select_stages(self, options: SubmitOptions) -> list[str]:
        """Stages entering a run for the given options, closed under dependencies.

        The analysis group is always selected. Stages of selected groups pull
        in their transitive dependencies so every selected stage can run.
        """
        selected: set[str] = set(STAGE_GROUPS["analysis"])
        if options.include_assets:
            selected.update(STAGE_GROUPS["assets"])
        if options.include_marketing:
            selected.update(STAGE_GROUPS["marketing"])
        if options.include_audiobook:
            selected.update(STAGE_GROUPS["audiobook"])
        selected.update(options.formats)

        dependency_map = self.get_dependency_map()
        for stage_id in list(selected):
            self.get_or_raise(stage_id)
            selected |= ancestors(dependency_map, stage_id)
        return sorted(selected)


def _import_stage(class_path: str) -> BaseStage:
    """Import and instantiate a stage from a dotted class path.

    Args:
        class_path: e.g. 'manuscript_pipeline.pipeline.stages.keywords.KeywordsStage'
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseStage):
        raise RegistryError(f"{class_path} is not a BaseStage subclass")

    return cls()
