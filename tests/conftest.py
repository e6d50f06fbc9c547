import json
import os

import pytest
from hypothesis import HealthCheck, settings

# CI profile: broad exploration; deadline off because some properties spawn `sh`
settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    print_blob=True,
)

# Light profile for mutation testing
settings.register_profile(
    "mutation",
    max_examples=20,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    derandomize=True,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture
def write_manifest():
    """Return a helper that writes package.json into a directory."""

    def _write(directory, data):
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / "package.json"
        text = data if isinstance(data, str) else json.dumps(data)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def workspace(tmp_path, write_manifest):
    """A pnpm workspace with one nested package."""
    root = tmp_path / "ws"
    write_manifest(
        root,
        {"name": "root", "version": "1.0.0", "scripts": {"test": "echo hello from workspace root"}},
    )
    (root / "pnpm-workspace.yaml").write_text("packages: ['packages/*']\n")
    write_manifest(
        root / "packages" / "foo",
        {"name": "foo", "version": "0.2.0", "scripts": {"test": "echo hello from foo"}},
    )
    return root
