"""
n8n-pi-installer - n8n with Cloudflare Tunnel on a Raspberry Pi
"""

__version__ = "1.0.0"

from .core import N8nInstaller
from .errors import InstallerError

__all__ = ["N8nInstaller", "InstallerError"]
