"""
shh: multi-user secrets for projects.

Secrets live encrypted inside a single `.shh` manifest that is safe to
commit. Each collaborator decrypts only what they have been granted,
using a personal password-protected RSA key pair.
"""

import os

__version__ = "1.1.5"
__author__ = "shh contributors"

CONFIG_HOME = os.environ.get("SHH_HOME", "~/.config/shh")
MANIFEST_NAME = ".shh"
WILDCARD = "*"
