import logging
import os

import click
from rich.logging import RichHandler

from .constants import BACKUP_RETENTION_DAYS, BACKUP_SCHEDULE, DEFAULT_TIMEZONE
from .core import N8nInstaller, console
from .errors import InstallerError
from .services.config_loader import ConfigLoader
from .services.validation import ValidationService


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _load_config(config):
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), ConfigLoader.DEFAULT_FILENAME)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path
        return ConfigLoader().load(resolved_config)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(config_values, verbose, log_file):
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    logger = logging.getLogger("n8ninstaller")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)
    return logger


def _build_installer(config_values, **overrides):
    options = {
        "home_dir": _resolve_option(overrides.pop("home_dir", None), config_values, "home_dir"),
        "backup_dir": _resolve_option(overrides.pop("backup_dir", None), config_values, "backup_dir"),
        "state_file": _resolve_option(overrides.pop("state_file", None), config_values, "state_file"),
        "retention_days": int(
            _resolve_option(
                overrides.pop("retention_days", None),
                config_values,
                "retention_days",
                default=BACKUP_RETENTION_DAYS,
            )
        ),
        "backup_schedule": str(
            _resolve_option(None, config_values, "backup_schedule", default=BACKUP_SCHEDULE)
        ),
    }
    options.update(overrides)
    try:
        return N8nInstaller(**options)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc


common_options = [
    click.option(
        "--config",
        required=False,
        type=click.Path(),
        help="Path to a YAML configuration file. Defaults to .n8n-installer.yml if present.",
    ),
    click.option("--home-dir", required=False, type=click.Path(), help="Home directory of the n8n user."),
    click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging"),
    click.option("--log-file", type=click.Path(), help="Path to log file"),
]


def with_common_options(func):
    for option in reversed(common_options):
        func = option(func)
    return func


@click.group()
def main():
    """Install and operate n8n behind a Cloudflare Tunnel on a Raspberry Pi."""


@main.command()
@with_common_options
@click.option("--domain", required=False, help="Public hostname for n8n (e.g. n8n.example.org).")
@click.option("--db-password", required=False, help="PostgreSQL password (default: n8n_password).")
@click.option("--tunnel-name", required=False, help="Cloudflare Tunnel name (default: n8n-tunnel).")
@click.option("--timezone", required=False, help=f"Container timezone (default: {DEFAULT_TIMEZONE}).")
@click.option(
    "--yes",
    "assume_yes",
    is_flag=True,
    default=None,
    help="Answer yes to every confirmation and never block on prompts.",
)
@click.option(
    "--state-file",
    required=False,
    type=click.Path(),
    help="Path to the installation state file (default: ~/.n8n-installer/state.json).",
)
def install(config, home_dir, verbose, log_file, domain, db_password, tunnel_name, timezone, assume_yes, state_file):
    """Run (or resume) the installation."""
    config_values = _load_config(config)
    _configure_logging(config_values, verbose, log_file)

    installer = _build_installer(
        config_values,
        home_dir=home_dir,
        state_file=state_file,
        domain=_resolve_option(domain, config_values, "domain"),
        db_password=_resolve_option(db_password, config_values, "db_password"),
        tunnel_name=_resolve_option(tunnel_name, config_values, "tunnel_name"),
        timezone=str(_resolve_option(timezone, config_values, "timezone", default=DEFAULT_TIMEZONE)),
        assume_yes=bool(_resolve_option(assume_yes, config_values, "assume_yes", default=False)),
    )
    raise SystemExit(installer.run())


@main.command()
@with_common_options
@click.option("--backup-dir", required=False, type=click.Path(), help="Backup directory (default: ~/backups).")
@click.option("--retention-days", required=False, type=int, default=None, help="Days to keep backups.")
def backup(config, home_dir, verbose, log_file, backup_dir, retention_days):
    """Dump the database and archive n8n data and tunnel config."""
    config_values = _load_config(config)
    _configure_logging(config_values, verbose, log_file)

    installer = _build_installer(
        config_values,
        home_dir=home_dir,
        backup_dir=backup_dir,
        retention_days=retention_days,
    )
    try:
        installer.backup_service.run_backup()
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("date")
@with_common_options
@click.option("--backup-dir", required=False, type=click.Path(), help="Backup directory (default: ~/backups).")
def restore(date, config, home_dir, verbose, log_file, backup_dir):
    """Restore n8n from the backup taken on DATE (YYYY-MM-DD). Overwrites live data."""
    try:
        day = ValidationService().validate_backup_date(date)
    except InstallerError as exc:
        raise click.BadParameter(str(exc), param_hint="DATE") from exc

    config_values = _load_config(config)
    _configure_logging(config_values, verbose, log_file)

    installer = _build_installer(config_values, home_dir=home_dir, backup_dir=backup_dir)
    try:
        installer.backup_service.restore(day)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@with_common_options
@click.option("--state-file", required=False, type=click.Path(), help="Path to the installation state file.")
def status(config, home_dir, verbose, log_file, state_file):
    """Show the persisted installation phase."""
    config_values = _load_config(config)
    _configure_logging(config_values, verbose, log_file)

    installer = _build_installer(config_values, home_dir=home_dir, state_file=state_file)
    try:
        phase = installer.state_service.current_phase()
        state = installer.state_service.load() or {}
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"Phase: [bold]{phase.value}[/bold]")
    console.print(f"Last run status: {state.get('status', '<none>')}")
    if state.get("last_error"):
        console.print(f"Last error: {state['last_error']}", markup=False)


if __name__ == "__main__":
    main()
