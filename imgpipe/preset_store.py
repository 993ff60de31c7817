"""
User preset management.

Presets created or imported here live in the ``presets`` section of the
configuration file. Every change is validated by loading the preset through
``WorkflowLoader`` before the file is rewritten.
"""

import copy
import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .config import Config, default_config_path
from .exceptions import LoadError, PresetError
from .loader import WorkflowLoader

logger = logging.getLogger(__name__)


BUILTIN_PRESETS = ('quick-thumbnails', 'web-gallery-prep', 'high-quality')


class PresetStore:
    """Creates, deletes, exports and imports presets kept in the configuration file."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.path = Path(self.config.path) if self.config.path else default_config_path()

    def create(self, name: str, base_workflow: str,
               description: Optional[str] = None) -> Dict[str, Any]:
        """
        Add an empty preset on top of an existing workflow.

        Returns:
            The stored preset document

        Raises:
            PresetError: If the name is taken or the base workflow is unknown
            LoadError: If the new preset does not validate
        """
        self._check_name_free(name)
        try:
            WorkflowLoader(self.config).load_workflow(base_workflow)
        except LoadError:
            raise PresetError(f"Base workflow not found: {base_workflow}") from None

        document = {
            'name': name,
            'description': description or f"User-created preset based on {base_workflow}",
            'base_workflow': base_workflow,
            'overrides': {'settings': {}, 'steps': {}},
        }
        self._store(name, document)
        logger.info(f"Created preset '{name}' based on '{base_workflow}'")
        return document

    def delete(self, name: str) -> None:
        """
        Remove a preset from the configuration file.

        Raises:
            PresetError: For built-in presets or presets not defined in the file
        """
        if name in BUILTIN_PRESETS:
            raise PresetError(f"Cannot delete built-in preset: {name}")

        document = self._read_document()
        presets = document.get('presets') or {}
        if name not in presets:
            raise PresetError(f"Preset '{name}' is not defined in {self.path}")

        del presets[name]
        document['presets'] = presets
        self._write_document(document)
        logger.info(f"Deleted preset '{name}'")

    def export(self, name: str, output_file: Union[str, Path]) -> Path:
        """
        Write a preset's unmerged definition to its own YAML file.

        Raises:
            PresetError: If the preset does not exist or the file cannot be written
        """
        try:
            document = copy.deepcopy(WorkflowLoader(self.config).preset_document(name))
        except LoadError:
            raise PresetError(f"Preset not found: {name}") from None
        document.setdefault('name', name)

        output = Path(output_file).expanduser()
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, 'w') as f:
                yaml.safe_dump(document, f, sort_keys=False, default_flow_style=False)
        except OSError as e:
            raise PresetError(f"Failed to export preset '{name}': {e}")

        logger.info(f"Exported preset '{name}' to {output}")
        return output

    def import_(self, input_file: Union[str, Path], name: Optional[str] = None) -> Dict[str, Any]:
        """
        Copy a preset file into the configuration, optionally under a new name.

        Returns:
            The stored preset document

        Raises:
            PresetError: If the file is unreadable, not a preset, or the name is taken
            LoadError: If the imported preset does not validate
        """
        source = Path(input_file).expanduser()
        try:
            with open(source, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise PresetError(f"Failed to read preset file {source}: {e}")

        if not isinstance(document, dict) or 'base_workflow' not in document:
            raise PresetError(f"Not a preset definition (no 'base_workflow'): {source}")

        name = name or document.get('name') or source.stem
        self._check_name_free(name)
        document['name'] = name

        self._store(name, document)
        logger.info(f"Imported preset '{name}' from {source}")
        return document

    def _check_name_free(self, name: str):
        loader = WorkflowLoader(self.config)
        if name in loader.list_presets():
            raise PresetError(f"Preset already exists: {name}")
        if name in loader.list_workflows():
            raise PresetError(f"Name already used by a workflow: {name}")

    def _store(self, name: str, preset: Dict[str, Any]):
        presets = dict(self.config.presets)
        presets[name] = preset
        WorkflowLoader(dataclasses.replace(self.config, presets=presets)).load(name)

        document = self._read_document()
        section = document.get('presets') or {}
        section[name] = preset
        document['presets'] = section
        self._write_document(document)

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise PresetError(f"Failed to read configuration {self.path}: {e}")

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise PresetError(f"Configuration must be a YAML mapping: {self.path}")
        return document

    def _write_document(self, document: Dict[str, Any]):
        """Write the configuration atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix('.tmp')
        with open(temp_file, 'w') as f:
            yaml.safe_dump(document, f, sort_keys=False, default_flow_style=False)
        temp_file.replace(self.path)
        logger.debug(f"Wrote configuration to {self.path}")
