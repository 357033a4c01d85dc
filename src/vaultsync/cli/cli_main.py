# external imports
import click

# local imports
from .. import __version__
from .cli_core import auth, reconcile, reset, start, sync
from .cli_info import conflicts, errors, status
from .cli_settings import config, config_files
from .core import OrderedGroup


@click.group(cls=OrderedGroup, help="Sync a local vault with Google Drive.")
@click.version_option(version=__version__, message="%(version)s")
def main() -> None:
    pass


main.add_command(start, section="Core Commands")
main.add_command(sync, section="Core Commands")
main.add_command(reconcile, section="Core Commands")
main.add_command(auth, section="Core Commands")

main.add_command(status, section="Information")
main.add_command(errors, section="Information")
main.add_command(conflicts, section="Information")
main.add_command(config_files, section="Information")

main.add_command(config, section="Settings")
main.add_command(reset, section="Maintenance")
