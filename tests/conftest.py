"""Shared test fixtures for gwt-compiler."""

from pathlib import Path

import pytest
import yaml

from gwt_compiler.config import save_config
from gwt_compiler.models import ProjectConfig
from gwt_compiler.registry import Registry, registry_from_dict

SAMPLE_SPEC = """\
;===============================================================
; Account registration.
;===============================================================

;===============================================================
; User can register with email and password.
;===============================================================
GIVEN no registered users.
WHEN a user registers with email "bob@example.com" and password "secret123".
THEN there is 1 registered user.
THEN the user "bob@example.com" can log in.

;===============================================================
; A second registration adds another user.
;===============================================================
GIVEN a registered user "ann@example.com" with password "pw".
WHEN a user registers with email "bob@example.com" and password "secret123".
THEN there are 2 registered users.
AND the registration succeeds.
"""

SAMPLE_REGISTRY = """\
module: accounts.operations
setup: reset
teardown: reset
templates:
  - kind: GIVEN
    pattern: no registered users
    operation: clear_users
  - kind: GIVEN
    pattern: a registered user "{email}" with password "{password}"
    operation: register_user
  - kind: WHEN
    pattern: a user registers with email "{email}" and password "{password}"
    operation: register_user
  - kind: THEN
    pattern: there is {count} registered user
    operation: count_users
    params: {count: number}
  - kind: THEN
    pattern: there are {count} registered users
    operation: count_users
    params: {count: number}
    expected: count
  - kind: THEN
    pattern: the user "{email}" can log in
    operation: can_log_in
    compare: truthy
  - kind: THEN
    pattern: the registration succeeds
    operation: succeeded
    pass_result: true
"""

OPERATIONS_IMPL = '''\
_users = {}


def reset():
    _users.clear()


def clear_users():
    _users.clear()


def register_user(email, password):
    if email in _users:
        return False
    _users[email] = password
    return True


def count_users():
    return len(_users)


def can_log_in(email):
    return email in _users


def succeeded(result):
    return result is True
'''

OPERATIONS_STUB = '''\
def reset():
    pass


def clear_users():
    pass


def register_user(email, password):
    raise NotImplementedError("register_user")


def count_users():
    return 0


def can_log_in(email):
    return False


def succeeded(result):
    return False
'''


@pytest.fixture
def sample_gwt_content() -> str:
    """Return a sample GWT spec string with a description and two scenarios."""
    return SAMPLE_SPEC


@pytest.fixture
def multi_scenario_gwt() -> str:
    """Return a GWT spec with untitled and titled scenarios."""
    return """\
GIVEN no registered users.
WHEN a user registers with email "a@example.com" and password "x".
THEN there is 1 registered user.

;===============================================================
; Login after registration.
;===============================================================
GIVEN a registered user "a@example.com" with password "x".
WHEN the user logs in.
THEN the user "a@example.com" can log in.

; Logout.
GIVEN a registered user "a@example.com" with password "x".
WHEN the user logs out.
THEN the user is logged out.
"""


@pytest.fixture
def registry_yaml() -> str:
    return SAMPLE_REGISTRY


@pytest.fixture
def registry(registry_yaml: str) -> Registry:
    """The sample registry, validated and compiled."""
    return registry_from_dict(yaml.safe_load(registry_yaml), source="operations.yaml")


@pytest.fixture
def initialized_project(tmp_path: Path) -> Path:
    """Create a temporary project with gwt-compiler initialized."""
    save_config(ProjectConfig(), tmp_path)
    (tmp_path / "specs").mkdir()
    return tmp_path


def write_operations(project_root: Path, source: str) -> Path:
    """Write the accounts.operations module the sample registry binds to."""
    package = project_root / "accounts"
    package.mkdir(exist_ok=True)
    (package / "__init__.py").write_text("")
    target = package / "operations.py"
    target.write_text(source)
    return target


@pytest.fixture
def accounts_project(initialized_project: Path, sample_gwt_content: str, registry_yaml: str) -> Path:
    """An initialized project with the sample spec, registry and operations."""
    specs_dir = initialized_project / "specs"
    (specs_dir / "accounts.gwt").write_text(sample_gwt_content)
    (specs_dir / "operations.yaml").write_text(registry_yaml)
    write_operations(initialized_project, OPERATIONS_IMPL)
    return initialized_project


@pytest.fixture
def operations_stub() -> str:
    """Operations that exist but are not implemented yet."""
    return OPERATIONS_STUB


@pytest.fixture
def operations_impl() -> str:
    return OPERATIONS_IMPL
