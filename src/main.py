import click
from src.modules.service.commands import create_service_commands
from src.modules.logging import create_logger


class LifelineContext:
    """Context object to store CLI state."""
    def __init__(self):
        self.logger = None

pass_context = click.make_pass_decorator(LifelineContext, ensure=True)

@click.group()
@click.option('--output', '-o',
              type=click.Choice(['colorful', 'plain', 'json']),
              default='colorful',
              help='Output format (colorful for CLI, plain for CI/file, json for machine parsing)',
              envvar='LIFELINE_OUTPUT')
@click.option('--log-level', '-l',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              default='INFO',
              help='Set the logging level',
              envvar='LIFELINE_LOG_LEVEL')
@pass_context
def cli(ctx, output, log_level):
    """Lifeline: graceful shutdown and resilient execution for long-running services."""
    ctx.logger = create_logger(output, log_level)

# Add commands
cli.add_command(create_service_commands())

def main():
    cli()

if __name__ == '__main__':
    main()
