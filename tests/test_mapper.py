from modules.firecrawl_crawl.lib import mapper
from modules.firecrawl_crawl.lib.models import LaunchResult


def _launcher(code, body=None):
    calls = []

    def launch(command, **kwargs):
        calls.append((list(command), kwargs))
        if body is not None:
            with open(command[command.index("-o") + 1], "w", encoding="utf-8") as f:
                f.write(body)
        return LaunchResult(exit_code=code)

    launch.calls = calls
    return launch


def test_map_command(settings):
    launch = _launcher(0, '{"links": []}')
    assert mapper.run_map(settings, launcher=launch) == 0

    command, kwargs = launch.calls[0]
    assert command[:3] == ["firecrawl", "map", "https://makler.example"]
    assert command[command.index("--limit") + 1] == "20"
    assert "timeout" not in kwargs


def test_map_child_failure_propagates(settings):
    assert mapper.run_map(settings, launcher=_launcher(5)) == 5


def test_map_invalid_json(settings, read_log):
    assert mapper.run_map(settings, launcher=_launcher(0, "not json")) == 1
    assert read_log("error-test")[-1]["op"] == "validate"
