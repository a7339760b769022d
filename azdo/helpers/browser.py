"""
Opening URLs in the user's browser.
"""

import logging
import shlex
import subprocess
import webbrowser

from ..cli.errors import AzdoError, ExternalCommandExitError
from ..config.config import Config

logger = logging.getLogger(__name__)


def open_url(ios, url: str, browser: str = ""):
    """
    Open url with AZDO_BROWSER/BROWSER (or the configured browser), falling
    back to the platform default.
    """
    command = Config.browser() or browser
    if ios.is_stdout_tty():
        ios.err_out.write(f"Opening {url} in your browser.\n")
    if command:
        args = shlex.split(command) + [url]
        logger.debug("Launching browser %s", args)
        try:
            result = subprocess.run(args)
        except OSError as e:
            raise AzdoError(f"failed to launch browser {args[0]}: {e}") from e
        if result.returncode != 0:
            raise ExternalCommandExitError(result.returncode, args[0])
        return
    if not webbrowser.open(url):
        raise AzdoError(f"unable to open a browser for {url}")
