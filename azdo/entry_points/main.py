"""
Program entry point: set up logging, build the command tree, run it and
turn the outcome into a process exit code.
"""

import logging
import sys
from typing import List, Optional
from urllib.parse import urlparse

import requests
from azure.devops.exceptions import AzureDevOpsAuthenticationError

from ..cli.context import CmdContext
from ..cli.errors import (AuthError, CancelError, ClosedPagerPipe, ExternalCommandExitError, FlagError,
                          SilentError)
from ..cli.root import build_root, execute
from ..config.config import Config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCEL = 2
EXIT_AUTH = 4

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging():
    """Quiet by default; AZDO_DEBUG turns on diagnostics, AZDO_DEBUG=api also logs HTTP traffic."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)
    if Config.debug_enabled():
        logging.getLogger("azdo").setLevel(logging.DEBUG)
    if Config.debug_api():
        for name in ("msrest", "azure.devops", "urllib3"):
            logging.getLogger(name).setLevel(logging.DEBUG)


def _host(error: requests.exceptions.ConnectionError) -> str:
    request = getattr(error, "request", None)
    url = getattr(request, "url", None) or ""
    return urlparse(url).hostname or Config.DEFAULT_HOSTNAME


def run(ctx: CmdContext, argv: List[str]) -> int:
    """
    Execute argv and map the outcome onto an exit code.

    Returns:
        0 success, 1 failure, 2 cancelled, 4 authentication failure, or the
        exit code of a failed child process
    """
    ios = ctx.io_streams()
    try:
        root = build_root(ctx)
        execute(ctx, root, argv)
        return EXIT_OK
    except FlagError as e:
        message = str(e)
        if message:
            ios.err_out.write(f"{message}\n")
        usage = getattr(e, "usage", None)
        if usage:
            ios.err_out.write(f"\n{usage.rstrip()}\n")
        return EXIT_ERROR
    except (CancelError, KeyboardInterrupt) as e:
        logger.debug("Cancelled: %s", e)
        ios.err_out.write("\n")
        return EXIT_CANCEL
    except (AuthError, AzureDevOpsAuthenticationError) as e:
        ios.err_out.write(f"{e}\n")
        return EXIT_AUTH
    except ExternalCommandExitError as e:
        return e.exit_code
    except SilentError:
        return EXIT_ERROR
    except (ClosedPagerPipe, BrokenPipeError):
        return EXIT_OK
    except requests.exceptions.ConnectionError as e:
        logger.debug("Connection failed", exc_info=True)
        ios.err_out.write(f"error connecting to {_host(e)}\n"
                          f"check your internet connection or {Config.STATUS_URL}\n")
        return EXIT_ERROR
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        ios.err_out.write(f"{e}\n")
        return EXIT_ERROR
    finally:
        ios.stop_progress_indicator()
        ios.stop_pager()


def main(argv: Optional[List[str]] = None):
    setup_logging()
    if argv is None:
        argv = sys.argv[1:]
    sys.exit(run(CmdContext(), argv))


if __name__ == "__main__":
    main()
