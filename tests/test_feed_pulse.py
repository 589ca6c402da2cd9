import allure
from click.testing import CliRunner

from feed_pulse import __version__
from feed_pulse.main import feed_pulse

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Feeds, Queues & Clusters"),
]


def test_version():
    assert __version__


def test_version_option():
    runner = CliRunner()
    result = runner.invoke(feed_pulse, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
