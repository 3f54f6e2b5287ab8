# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

# PYTHON_ARGCOMPLETE_OK

"""
Remove stuck arr queue items and clean up seeding downloads according to rules.
"""

import sys
import contextlib
import logging
import pathlib
import argparse
import json
import pdb
import typing

import argcomplete

import cleanuparr.runner
from . import utils

logger = logging.getLogger(__name__)

# Manage version through the VCS CI/CD process
__version__ = None
try:
    from . import version
except ImportError:  # pragma: no cover
    pass
else:  # pragma: no cover
    __version__ = version.version

# Modules whose messages may be logged once per daemon session
DAEMON_ONCE_MODULES = (
    "runner",
    "servarr",
    "downloadclient",
    "downloaditem",
    "queuecleaner",
    "downloadcleaner",
    "qbittorrent",
    "deluge",
    "transmission",
    "utorrent",
    "rtorrent",
)


# Define command line options and arguments
parser = argparse.ArgumentParser(
    description=__doc__.strip(),
    formatter_class=argparse.ArgumentDefaultsHelpFormatter,
)
parser.add_argument(
    "--log-level",
    default=argparse.SUPPRESS,
    # The `logging` module provides no public access to all defined levels:
    choices=logging._nameToLevel,  # pylint: disable=protected-access
    help="Select logging verbosity. (default: INFO)",
)
parser.add_argument(
    "--config",
    "-c",
    type=argparse.FileType("r"),
    default=str(pathlib.Path.home() / ".config" / "cleanuparr.yml"),
    help="""\
The path to the Cleanuparr configuration file. Example:
src/cleanuparr/home/.config/cleanuparr.yml\
""",
)
# Define command-line subcommands:
subparsers = parser.add_subparsers(
    dest="command",
    required=True,
    help="subcommand",
)


def queue_clean(  # pylint: disable=missing-function-docstring,missing-return-doc
    runner,
    *args,
    **kwargs,
) -> typing.Optional[dict]:
    runner.update()
    return runner.queue_clean(*args, **kwargs)


queue_clean.__doc__ = cleanuparr.runner.CleanuparrRunner.queue_clean.__doc__
parser_queue_clean = subparsers.add_parser(
    "queue-clean",
    help=queue_clean.__doc__.strip(),  # type: ignore
    description=queue_clean.__doc__.strip(),  # type: ignore
)
# Make the function for the sub-command specified in the CLI argument available in the
# argument parser for delegation below.
parser_queue_clean.set_defaults(command=queue_clean)


def download_clean(  # pylint: disable=missing-function-docstring,missing-return-doc
    runner,
    *args,
    **kwargs,
) -> typing.Optional[dict]:
    runner.update()
    return runner.download_clean(*args, **kwargs)


download_clean.__doc__ = cleanuparr.runner.CleanuparrRunner.download_clean.__doc__
parser_download_clean = subparsers.add_parser(
    "download-clean",
    help=download_clean.__doc__.strip(),  # type: ignore
    description=download_clean.__doc__.strip(),  # type: ignore
)
parser_download_clean.set_defaults(command=download_clean)


def exec_(  # pylint: disable=missing-function-docstring,missing-return-doc
    runner,
    *args,
    **kwargs,
) -> typing.Optional[dict]:
    runner.update()
    return runner.exec_(*args, **kwargs)


exec_.__doc__ = cleanuparr.runner.CleanuparrRunner.exec_.__doc__
parser_exec = subparsers.add_parser(
    "exec",
    help=exec_.__doc__.strip(),  # type: ignore
    description=exec_.__doc__.strip(),  # type: ignore
)
parser_exec.set_defaults(command=exec_)


def daemon(runner, *args, **kwargs):  # pylint: disable=missing-function-docstring
    runner.daemon(*args, **kwargs)


daemon.__doc__ = cleanuparr.runner.CleanuparrRunner.daemon.__doc__
parser_daemon = subparsers.add_parser(
    "daemon",
    help=daemon.__doc__.strip(),  # type: ignore
    description=daemon.__doc__.strip(),  # type: ignore
)
parser_daemon.set_defaults(command=daemon)
# Register shell tab completion
argcomplete.autocomplete(parser)


def config_cli_logging(
    root_level: int = logging.INFO,
    log_level: str = parser.get_default("--log-level"),
    **_,
):
    """
    Configure logging command-line usage as soon as possible to affect all output.

    :param root_level: Logging level for other packages
    :param log_level: Logging level for this package
    :param _: Ignores other kwargs
    """
    # Set just this package's logger level, not others', from options and environment
    # variables:
    logging.basicConfig(level=root_level)
    # If the command-line option wasn't specified, fallback to the environment variable:
    if log_level is None:
        log_level = "INFO"
        if utils.DEBUG:  # pragma: no cover
            log_level = "DEBUG"
    logger.setLevel(getattr(logging, log_level.strip().upper()))
    # Log a given message only once per daemon session, the first loop.
    logger.addFilter(utils.daemon_once_filter)
    for module_name in DAEMON_ONCE_MODULES:
        logging.getLogger(f"{__name__}.{module_name}").addFilter(
            utils.daemon_once_filter,
        )

    # Avoid logging all JSON responses, particularly the large queue responses from
    # Servarr APIs
    logging.getLogger("arrapi.api").setLevel(logging.INFO)
    logging.getLogger("arrapi.raws.base").setLevel(logging.INFO)


def main(args=None):  # pylint: disable=missing-function-docstring
    try:
        _main(args=args)
    except Exception:  # pragma: no cover
        if utils.POST_MORTEM:
            pdb.post_mortem()
        raise


def _main(args=None):
    """
    Inner main command-line handler for outer exception handling.
    """
    # Parse command-line options and positional arguments:
    parsed_args = argparse.Namespace()
    try:
        parsed_args = parser.parse_args(args=args, namespace=parsed_args)
    finally:
        # Use `argparse` to validate that the config file exists and can be read, then
        # pass the path into the runner:
        if callable(getattr(parsed_args.config, "close", None)):  # pragma: no cover
            with contextlib.closing(parsed_args.config):
                parsed_args.config = parsed_args.config.name
    # Avoid noisy boilerplate, functions meant to handle command-line usage should
    # accept kwargs that match the defined option and argument names:
    cli_kwargs = dict(vars(parsed_args))
    # Remove any meta options and arguments, those used to direct option and argument
    # handling:
    del cli_kwargs["command"]
    # Separate the arguments for the subcommand:
    cleanuparr_dests = {
        action.dest for action in parser._actions  # pylint: disable=protected-access
    }
    shared_kwargs = dict(cli_kwargs)
    command_kwargs = {}
    for dest, value in list(shared_kwargs.items()):
        if dest not in cleanuparr_dests:  # pragma: no cover
            command_kwargs[dest] = value
            del shared_kwargs[dest]

    # Configure logging for command-line usage:
    config_cli_logging(**shared_kwargs)
    shared_kwargs.pop("log_level", None)

    runner = cleanuparr.runner.CleanuparrRunner(**shared_kwargs)
    # Delegate to the function for the subcommand command-line argument:
    logger.debug("Running %r subcommand", parsed_args.command.__name__)
    # subcommands can return a result to pretty print, or handle output themselves and
    # return nothing:
    if (result := parsed_args.command(runner, **command_kwargs)) is not None:
        json.dump(result, sys.stdout, indent=2)


main.__doc__ = __doc__
