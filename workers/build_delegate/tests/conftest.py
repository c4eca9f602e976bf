"""
Test fixtures for build_delegate.

Provides small sub-project trees on disk.  A Python script (build.py)
stands in for the toolchain, so no Rust toolchain is needed: tests run
``[sys.executable, "build.py"]`` inside the staged copy.
"""
from __future__ import annotations

import os
import sys
import textwrap
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from build_delegate.config import Settings
from build_delegate.policy.profile import DelegateProfile


# ── Sample sub-project content ──────────────────────────────────────────────

CARGO_TOML = textwrap.dedent("""\
    [package]
    name = "helper"
    version = "0.1.0"

    [dependencies]
    lib-crate = { path = "../lib-crate" }
""")

MAIN_RS = textwrap.dedent("""\
    fn main() {
        println!("cargo:rerun-if-changed=foo");
    }
""")

# Prints the two directives of the end-to-end scenario.
SUM_SCRIPT = textwrap.dedent("""\
    import sys
    out = sys.stdout.buffer
    out.write(b"cargo:rerun-if-changed=foo\\n")
    out.write(b"build-directive:sum=%d\\n" % (1 + 2))
    out.flush()
""")

# Reports what it sees from inside the staged copy.
INSPECT_SCRIPT = textwrap.dedent("""\
    import os
    import sys
    out = sys.stdout.buffer
    root = os.getcwd()
    out.write(("cwd=" + root + "\\n").encode())
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            rel = os.path.relpath(os.path.join(dirpath, name), root)
            out.write(("file=" + rel.replace(os.sep, "/") + "\\n").encode())
    for name in sorted(os.environ):
        out.write(("env=" + name + "=" + os.environ[name] + "\\n").encode())
    out.flush()
""")

# Fails with a distinguishing marker on stderr.
FAIL_SCRIPT = textwrap.dedent("""\
    import sys
    sys.stdout.buffer.write(b"cargo:rustc-cfg=should_not_be_relayed\\n")
    sys.stdout.flush()
    sys.stderr.buffer.write(b"error: MARKER-7f3a sub-project exploded\\n")
    sys.stderr.flush()
    sys.exit(7)
""")

SLEEP_SCRIPT = textwrap.dedent("""\
    import time
    time.sleep(30)
""")

# Helper executable left behind by the fake build step; reports where it runs.
HELPER_SCRIPT = textwrap.dedent("""\
    import os
    import sys
    out = sys.stdout.buffer
    manifest_dir = os.environ["CARGO_MANIFEST_DIR"]
    out.write(("cargo:rerun-if-changed=" + os.path.join(manifest_dir, "build.rs") + "\\n").encode())
    out.write(("cwd=" + os.getcwd() + "\\n").encode())
    out.flush()
""")

# Stands in for `cargo build`: writes HELPER_SOURCE to target/debug/HELPER_NAME.
FAKE_CARGO_SCRIPT = textwrap.dedent("""\
    import os
    import sys
    if sys.argv[1:] != ["build"]:
        sys.exit("unexpected arguments: %r" % sys.argv[1:])
    out_dir = os.path.join(os.environ["CARGO_TARGET_DIR"], "debug")
    os.makedirs(out_dir, exist_ok=True)
    helper = os.path.join(out_dir, HELPER_NAME)
    with open(helper, "w") as f:
        f.write(HELPER_SOURCE)
    os.chmod(helper, 0o755)
    sys.stderr.write("   Compiling helper v0.1.0\\n")
""")


def write_subproject(root: Path, script: str = SUM_SCRIPT, with_artifacts: bool = True) -> Path:
    """Lay out a sub-project at *root* whose toolchain runs *script*."""
    (root / "src" / "nested").mkdir(parents=True)
    (root / "Cargo.toml").write_text(CARGO_TOML)
    (root / "src" / "main.rs").write_text(MAIN_RS)
    (root / "src" / "nested" / "data.txt").write_text("payload\n")
    (root / "build.py").write_text(script)
    if with_artifacts:
        (root / "target" / "debug").mkdir(parents=True)
        (root / "target" / "debug" / "stale.bin").write_bytes(b"\x7fELF stale")
    return root


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def profile() -> DelegateProfile:
    return DelegateProfile.cargo()


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    """Staging root kept apart from the sub-project's own tree."""
    return tmp_path / "staging"


@pytest.fixture
def settings(staging_root: Path) -> Settings:
    return Settings(BUILD_DELEGATE_STAGING_ROOT=str(staging_root))


@pytest.fixture
def python_toolchain() -> List[str]:
    return [sys.executable, "build.py"]


@pytest.fixture
def parent_dir(tmp_path: Path) -> Path:
    """The parent project that embeds the sub-project."""
    p = tmp_path / "parent"
    (p / ".cargo").mkdir(parents=True)
    (p / ".cargo" / "config.toml").write_text('[build]\nrustflags = ["--cfg", "leak"]\n')
    return p


@pytest.fixture
def sum_project(parent_dir: Path) -> Path:
    return write_subproject(parent_dir / "build-script", SUM_SCRIPT)


@pytest.fixture
def inspect_project(parent_dir: Path) -> Path:
    return write_subproject(parent_dir / "build-script", INSPECT_SCRIPT)


@pytest.fixture
def failing_project(parent_dir: Path) -> Path:
    return write_subproject(parent_dir / "build-script", FAIL_SCRIPT)


@pytest.fixture
def sleeping_project(parent_dir: Path) -> Path:
    return write_subproject(parent_dir / "build-script", SLEEP_SCRIPT)


@pytest.fixture
def ambient_env(parent_dir: Path) -> Dict[str, str]:
    """Environment as a cargo build script would see it."""
    env = {
        "PATH": os.environ.get("PATH", ""),
        "CARGO": "cargo",
        "CARGO_PKG_NAME": "parent",
        "CARGO_MANIFEST_DIR": str(parent_dir),
        "CARGO_FEATURE_RUNTIME": "1",
        "CARGO_ENCODED_RUSTFLAGS": "--cfg\x1fleak",
        "CARGO_TARGET_DIR": str(parent_dir / "target"),
        "RUSTFLAGS": "--cfg leak",
        "OUT_DIR": str(parent_dir / "target" / "out"),
        "TARGET": "x86_64-unknown-linux-gnu",
        "UNRELATED_SECRET": "do-not-forward",
    }
    if "SYSTEMROOT" in os.environ:
        env["SYSTEMROOT"] = os.environ["SYSTEMROOT"]
    return env


@pytest.fixture
def make_subproject() -> Callable[..., Path]:
    """Factory for sub-projects laid out by the test itself."""
    return write_subproject


@pytest.fixture
def fake_cargo(tmp_path: Path) -> Path:
    """Executable `cargo` whose build step produces the build-script helper."""
    helper = "#!" + sys.executable + "\n" + HELPER_SCRIPT
    path = tmp_path / "bin" / "cargo"
    path.parent.mkdir()
    path.write_text(
        "#!" + sys.executable + "\n"
        + "HELPER_NAME = %r\nHELPER_SOURCE = %r\n" % ("build-script", helper)
        + FAKE_CARGO_SCRIPT
    )
    path.chmod(0o755)
    return path
