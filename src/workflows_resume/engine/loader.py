"""YAML loading for workflow graphs."""

import logging
from pathlib import Path

import yaml

from .load_result import LoadResult
from .schema import WorkflowGraph

logger = logging.getLogger(__name__)


def load_workflow_from_file(file_path: str | Path) -> LoadResult[WorkflowGraph]:
    """
    Load and validate a workflow graph from a YAML file.

    Returns:
        LoadResult.success(WorkflowGraph) if valid
        LoadResult.failure(error_message) otherwise
    """
    path = Path(file_path)

    if not path.exists():
        return LoadResult.failure(f"Workflow file not found: {file_path}")
    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}")

    try:
        yaml_content = path.read_text(encoding="utf-8")
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}")

    return load_workflow_from_yaml(yaml_content, source=str(file_path))


def load_workflow_from_yaml(
    yaml_content: str, source: str = "<string>"
) -> LoadResult[WorkflowGraph]:
    """
    Load and validate a workflow graph from a YAML string.

    Example:
        result = load_workflow_from_yaml('''
        name: hello
        blocks:
          - id: start
            type: starter
        ''')
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}")

    if not isinstance(data, dict):
        return LoadResult.failure(
            f"Workflow {source} must be a YAML dictionary, got {type(data).__name__}"
        )

    result = WorkflowGraph.validate_yaml_dict(data)
    if not result.is_success:
        return LoadResult.failure(f"Workflow validation failed in {source}:\n{result.error}")
    return result


def discover_workflows(directory: str | Path) -> LoadResult[list[WorkflowGraph]]:
    """
    Load every *.yaml / *.yml graph below a directory.

    Invalid files are logged and skipped; only a missing directory fails.
    """
    dir_path = Path(directory)
    if not dir_path.is_dir():
        return LoadResult.failure(f"Directory not found: {directory}")

    graphs: list[WorkflowGraph] = []
    yaml_files = sorted(dir_path.glob("**/*.yaml")) + sorted(dir_path.glob("**/*.yml"))
    for yaml_file in yaml_files:
        result = load_workflow_from_file(yaml_file)
        if result.is_success and result.value is not None:
            graphs.append(result.value)
        else:
            logger.warning(f"Failed to load workflow from {yaml_file.name}: {result.error}")

    return LoadResult.success(graphs)
