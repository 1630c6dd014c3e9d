import sys
import click

from src.modules.resilience.errors import ConfigError
from src.modules.service.command.serve import ServeCommand
from src.modules.service.config import load_service_config


def create_service_commands() -> click.Group:
    """Create the service commands."""

    @click.group(name="service")
    def service():
        """Run and inspect a lifeline-managed service."""
        pass

    @service.command(name="serve")
    @click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--port", type=int, help="Override the health server port")
    @click.pass_context
    def serve(ctx, config_file: str, port: int):
        """Run the health server and dependency probes until SIGINT/SIGTERM."""
        try:
            config = load_service_config(config_file)
        except ConfigError as e:
            raise click.UsageError(str(e))

        if port is not None:
            config = config.model_copy(update={"health": config.health.model_copy(update={"port": port})})

        command = ServeCommand(logger=ctx.obj.logger, config=config)
        sys.exit(command.run())

    @service.command(name="check-config")
    @click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
    @click.pass_context
    def check_config(ctx, config_file: str):
        """Validate a service configuration file."""
        try:
            config = load_service_config(config_file)
        except ConfigError as e:
            raise click.UsageError(str(e))

        ctx.obj.logger.log_info(f"Configuration for {config.name} is valid")
        ctx.obj.logger.log_info(f"Probes: {len(config.probes)}")
        ctx.obj.logger.log_info(
            f"Retry: {config.retry.max_attempts} attempts, "
            f"{config.retry.base_delay}s base delay, {config.retry.max_delay}s max delay"
        )

    return service
