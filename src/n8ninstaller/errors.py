"""Domain errors for the n8n installer."""


class InstallerError(RuntimeError):
    """Raised when the installation cannot continue safely."""


class RebootRequired(InstallerError):
    """Raised when the workflow must stop and resume after a reboot."""

    def __init__(self, message: str, phase, exit_code: int = 0):
        super().__init__(message)
        self.phase = phase
        self.exit_code = exit_code
