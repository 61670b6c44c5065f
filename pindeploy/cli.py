"""
Command line entry point for pindeploy.

    pindeploy deploy <environment> <build_dir> <project_name> <timestamp> [branch] [commit]
    pindeploy upload <directory> <pin_name>

``deploy`` runs the full pipeline and prints the deployment record as one
JSON line on stdout. ``upload`` is the standalone upload helper: it prints
only the pinning service's JSON response on stdout. Diagnostics for both go
to stderr.
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from pydantic import ValidationError as ModelValidationError

from pindeploy import __version__
from pindeploy.config import Settings, load_settings
from pindeploy.core.exceptions import PinDeployError
from pindeploy.core.orchestrator import DeploymentPipeline
from pindeploy.models.deployment import DeployRequest
from pindeploy.services.upload import PinataUploadClient
from pindeploy.utils.logging import configure_logging, get_logger, redact_text

EXIT_INTERRUPTED = 130

logger = get_logger(__name__)


def _fail(settings: Settings, error: PinDeployError) -> None:
    message = redact_text(error.message, settings.secret_values())
    logger.error("pindeploy.failed", error=message, error_type=type(error).__name__, **error.details)
    click.echo(f"✗ {message}", err=True)
    sys.exit(error.exit_code)


@click.group()
@click.version_option(version=__version__, prog_name="pindeploy")
@click.pass_context
def main(ctx: click.Context) -> None:
    """
    pindeploy - deploy static builds to IPFS through Pinata.
    """
    ctx.ensure_object(dict)
    try:
        settings = load_settings()
    except ModelValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    configure_logging(settings)
    ctx.obj["settings"] = settings


@main.command()
@click.argument("environment", type=click.Choice(["dev", "prod"]))
@click.argument("build_dir", type=click.Path(path_type=Path))
@click.argument("project_name")
@click.argument("timestamp")
@click.argument("branch", required=False, default="unknown")
@click.argument("commit", required=False, default="unknown")
@click.pass_context
def deploy(
    ctx: click.Context,
    environment: str,
    build_dir: Path,
    project_name: str,
    timestamp: str,
    branch: str,
    commit: str,
) -> None:
    """Stage, upload, optionally publish to IPNS, and record a deployment."""
    settings: Settings = ctx.obj["settings"]

    try:
        request = DeployRequest(
            environment=environment,
            build_dir=build_dir,
            project_name=project_name,
            timestamp=timestamp,
            branch=branch,
            commit=commit,
        )
    except ModelValidationError as e:
        errors = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise click.UsageError(errors) from e

    pipeline = DeploymentPipeline(settings)
    try:
        record = asyncio.run(pipeline.run(request))
    except PinDeployError as e:
        _fail(settings, e)
    except (KeyboardInterrupt, asyncio.CancelledError):
        click.echo("✗ Deployment interrupted", err=True)
        sys.exit(EXIT_INTERRUPTED)

    click.echo(record.model_dump_json(by_alias=True))


@main.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.argument("pin_name")
@click.pass_context
def upload(ctx: click.Context, directory: Path, pin_name: str) -> None:
    """Upload DIRECTORY to Pinata and print the JSON response."""
    settings: Settings = ctx.obj["settings"]
    client = PinataUploadClient(settings)

    try:
        result = asyncio.run(client.upload(directory, pin_name))
    except PinDeployError as e:
        _fail(settings, e)
    except (KeyboardInterrupt, asyncio.CancelledError):
        sys.exit(EXIT_INTERRUPTED)

    # Deploy scripts parse the last stdout line
    click.echo(json.dumps(result.raw_response))


if __name__ == "__main__":
    main()
