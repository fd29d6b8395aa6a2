import logging
import sys

import typer

from k3sctl.commands import create, delete, plan, status, validate

app = typer.Typer(help="K3s cluster bootstrap CLI")

# Global debug flag
debug_mode = False


# Configure logging
def setup_logging(debug: bool = False):
    """Configure logging based on debug mode."""
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler()
        ]
    )
    # Disable debug logging for noisy libraries
    if not debug:
        logging.getLogger('paramiko').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('kubernetes').setLevel(logging.WARNING)


# Add all command groups
app.add_typer(create.app, name="create")
app.add_typer(delete.app, name="delete")
app.add_typer(status.app, name="status")
app.command("plan")(plan.plan_cmd)
app.command("validate")(validate.validate_cmd)


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """k3sctl - K3s cluster bootstrap CLI."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            logging.exception(f"Unhandled exception: {e}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
