"""
Shared fixtures for shell-descriptor tests.
"""

import json
import os

import pytest

from shell_descriptor.cli_config import reset_config
from shell_descriptor.error_handling import reset_error_handler

SHELL_NIX = """let
  sources = import ./nix/sources.nix;
  pkgs = import sources.nixpkgs {};
  rust = import ./nix/rust.nix { inherit sources; };
in
pkgs.mkShell {
  buildInputs = with pkgs; [
    autoconf
    automake
    file
    gdb
    gettext
    gpgme
    libgpgerror
    openssl
    pkgconfig
    rust
  ];
}
"""

# Same shell without the debugger
MINIMAL_NIX = SHELL_NIX.replace("    gdb\n", "")

RUST_NIX = """{ sources ? import ./sources.nix }:
let
  pkgs = import sources.nixpkgs { overlays = [ (import sources.nixpkgs-mozilla) ]; };
  channel = "nightly";
  date = "2020-01-01";
in
(pkgs.rustChannelOf { inherit channel date; }).rust
"""

SOURCES_JSON = {
    "nixpkgs": {
        "branch": "nixos-19.09",
        "owner": "NixOS",
        "repo": "nixpkgs-channels",
        "rev": "3ba0d9f75ccbb6a1b9a1ebb7f3a2a0a8de6c3c58",
        "sha256": "0f9vlaxyr6rnpgq3kxy9lr2fqk6c0hnw6lcw1zqsmdbmbzwb58k9",
        "type": "tarball",
        "url": "https://github.com/NixOS/nixpkgs-channels/archive/3ba0d9f75ccb.tar.gz",
    },
    "nixpkgs-mozilla": {
        "branch": "master",
        "owner": "mozilla",
        "repo": "nixpkgs-mozilla",
        "rev": "36455d54de0b40d9432bba6d8207a5582210b3eb",
        "sha256": "0ii6gwi7bwp9bn5ry4ynmb6lqiqkfmjvqmyrn9pzy1hrwbbpl1ni",
        "type": "tarball",
        "url": "https://github.com/mozilla/nixpkgs-mozilla/archive/36455d54de0b.tar.gz",
    },
}


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path_factory, monkeypatch):
    """Keep user config files and SHELL_DESCRIPTOR_* variables out of tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(home)
    for key in list(os.environ):
        if key.startswith("SHELL_DESCRIPTOR_"):
            monkeypatch.delenv(key)

    reset_config()
    reset_error_handler()
    yield
    reset_config()
    reset_error_handler()


@pytest.fixture
def temp_dir(tmp_path):
    return tmp_path


@pytest.fixture
def nix_project(temp_dir):
    """A project with shell.nix, a gdb-less variant, and its nix/ pins."""
    nix_dir = temp_dir / "nix"
    nix_dir.mkdir()
    (nix_dir / "sources.json").write_text(json.dumps(SOURCES_JSON, indent=2))
    (nix_dir / "sources.nix").write_text("# generated by niv\n{}\n")
    (nix_dir / "rust.nix").write_text(RUST_NIX)
    (temp_dir / "shell.nix").write_text(SHELL_NIX)
    (temp_dir / "minimal.nix").write_text(MINIMAL_NIX)
    return temp_dir


@pytest.fixture
def sample_shell_nix(nix_project):
    return nix_project / "shell.nix"


@pytest.fixture
def sample_minimal_nix(nix_project):
    return nix_project / "minimal.nix"


@pytest.fixture
def sample_descriptor_toml(nix_project):
    descriptor = nix_project / "shell.toml"
    descriptor.write_text(
        'name = "pinreq"\n'
        'toolchainPin = "nix/rust.nix"\n'
        'dependencies = ["openssl", "gettext", "openssl", "gpgme"]\n'
    )
    return descriptor


@pytest.fixture
def sample_descriptor_json(nix_project):
    descriptor = nix_project / "shell.json"
    descriptor.write_text(
        json.dumps(
            {
                "toolchainPin": "nixpkgs-mozilla",
                "dependencies": ["autoconf", "automake", "pkgconfig"],
            }
        )
    )
    return descriptor
