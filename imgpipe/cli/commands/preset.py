"""Preset management commands: create, delete, export and import."""

import logging
from argparse import Namespace

from imgpipe.exceptions import LoadError, PresetError
from imgpipe.preset_store import PresetStore

from .run import configure_logging, load_cli_config, report_load_error


logger = logging.getLogger(__name__)


def preset_command(args: Namespace) -> int:
    """Dispatch ``imgpipe preset <action>``."""
    try:
        config = load_cli_config(args)
    except LoadError as e:
        configure_logging(args)
        return report_load_error(e)
    configure_logging(args, config)

    store = PresetStore(config)
    try:
        if args.preset_command == 'create':
            store.create(args.name, args.base_workflow, args.description)
            print(f"Created preset '{args.name}' in {store.path}")
        elif args.preset_command == 'delete':
            store.delete(args.name)
            print(f"Deleted preset '{args.name}' from {store.path}")
        elif args.preset_command == 'export':
            output = store.export(args.name, args.output)
            print(f"Exported preset '{args.name}' to {output}")
        elif args.preset_command == 'import':
            document = store.import_(args.input, args.name)
            print(f"Imported preset '{document['name']}' into {store.path}")
        else:
            logger.error("No preset action given (create, delete, export, import)")
            return 1
    except LoadError as e:
        return report_load_error(e)
    except PresetError as e:
        logger.error(str(e))
        return e.exit_code

    return 0
