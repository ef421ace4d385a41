"""
Registry of loaded workflow graphs.

Graphs are registered by name (the workflow id). New executions look their
graph up here; resumed executions never do, they run against the snapshot
frozen into their pause record.
"""

import logging
from pathlib import Path
from typing import Any, Literal

from .load_result import LoadResult
from .loader import discover_workflows
from .schema import WorkflowGraph

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """
    Central registry for workflow graphs.

    Example:
        registry = WorkflowRegistry()
        registry.load_from_directories(["templates/"])
        graph = registry.get("expense-approval")
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowGraph] = {}
        self._workflow_sources: dict[str, Path] = {}

    def register(self, workflow: WorkflowGraph, source_dir: Path | None = None) -> None:
        """
        Register a workflow graph.

        Raises:
            ValueError: If a workflow with the same name already exists
        """
        if workflow.name in self._workflows:
            raise ValueError(
                f"Workflow '{workflow.name}' already registered. Use clear() or unregister() first."
            )

        self._workflows[workflow.name] = workflow
        if source_dir is not None:
            self._workflow_sources[workflow.name] = source_dir

        logger.info(f"Registered workflow: {workflow.name}")

    def unregister(self, name: str) -> None:
        if name not in self._workflows:
            raise KeyError(f"Workflow '{name}' not found in registry")
        del self._workflows[name]
        self._workflow_sources.pop(name, None)

    def get(self, name: str) -> WorkflowGraph:
        """
        Get workflow by name.

        Raises:
            KeyError: If workflow not found
        """
        if name not in self._workflows:
            available = sorted(self._workflows.keys())
            raise KeyError(f"Workflow '{name}' not found. Available workflows: {available}")
        return self._workflows[name]

    def list_names(self) -> list[str]:
        return sorted(self._workflows.keys())

    def list_all_metadata(self) -> list[dict[str, Any]]:
        """Summary of each graph for list_workflows."""
        return [
            {
                "name": graph.name,
                "description": graph.description,
                "version": graph.version,
                "tags": graph.tags,
                "blocks": len(graph.blocks),
                "wait_blocks": [
                    block.id for block in graph.blocks if block.type in ("wait", "user_approval")
                ],
            }
            for graph in sorted(self._workflows.values(), key=lambda g: g.name)
        ]

    def load_from_directories(
        self,
        directories: list[str | Path],
        on_duplicate: Literal["skip", "overwrite", "error"] = "skip",
    ) -> LoadResult[dict[str, int]]:
        """
        Load graphs from several directories in priority order.

        on_duplicate controls name clashes across directories:
        "skip" keeps the first, "overwrite" keeps the last, "error" aborts.

        Returns:
            LoadResult.success({directory: loaded_count})
        """
        if not directories:
            return LoadResult.failure("No directories provided")

        results: dict[str, int] = {}
        for dir_path in (Path(d).resolve() for d in directories):
            discovered = discover_workflows(dir_path)
            if not discovered.is_success or discovered.value is None:
                logger.warning(discovered.error)
                results[str(dir_path)] = 0
                continue

            loaded_count = 0
            for workflow in discovered.value:
                if workflow.name in self._workflows:
                    previous = self._workflow_sources.get(workflow.name, "unknown")
                    if on_duplicate == "skip":
                        logger.info(
                            f"Skipping duplicate workflow '{workflow.name}' from {dir_path} "
                            f"(keeping existing from {previous})"
                        )
                        continue
                    if on_duplicate == "error":
                        error_msg = (
                            f"Duplicate workflow '{workflow.name}' found in {dir_path} "
                            f"(already exists from {previous})"
                        )
                        logger.error(error_msg)
                        return LoadResult.failure(error_msg)
                    logger.info(f"Overwriting workflow '{workflow.name}' from {previous}")
                    self.unregister(workflow.name)

                self.register(workflow, source_dir=dir_path)
                loaded_count += 1

            results[str(dir_path)] = loaded_count
            logger.info(f"Loaded {loaded_count} workflows from {dir_path}")

        return LoadResult.success(results)

    def clear(self) -> None:
        self._workflows.clear()
        self._workflow_sources.clear()

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, name: str) -> bool:
        return name in self._workflows

    def __repr__(self) -> str:
        return f"<WorkflowRegistry: {len(self._workflows)} workflows>"


__all__ = ["WorkflowRegistry"]
