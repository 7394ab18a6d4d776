"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_NON_PRODUCTION_FOLDERS = [
    "build",
    "docs",
    "installation",
    "tests",
    ".github",
]

DEFAULT_NON_PRODUCTION_FILES = [
    ".drone.yml",
    ".gitignore",
    ".php_cs",
    ".travis.yml",
    "README.md",
    "build.xml",
    "composer.json",
    "composer.lock",
    "phpunit.xml.dist",
    "robots.txt.dist",
    "travisci-phpunit.xml",
    "LICENSE",
    "RoboFile.dist.ini",
    "RoboFile.php",
    "codeception.yml",
    "jorobo.dist.ini",
    "manifest.xml",
    "crowdin.yaml",
]


class Settings(BaseSettings):
    """PatchTester application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PATCHTESTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/patchtester.db"

    # Paths
    working_tree: Path = Path("./site")
    backups_dir: Path = Path("./data/backups")
    media_version_file: Path = Path("./data/media_version")

    # Version of the software checked out in the working tree. Reverts are
    # only performed against the same version the patch was applied to.
    host_version: str = "0.0.0"

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_user: str = ""
    github_repo: str = ""
    github_token: str = ""
    github_timeout: float = Field(default=30.0, gt=0)

    # Pull classification
    rtc_label: str = "RTC"
    branch_label_prefix: str = "PR-"

    # Working tree layout
    source_prefix: str = "src"
    dev_marker: str = "installation/index.php"
    non_production_folders: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NON_PRODUCTION_FOLDERS)
    )
    non_production_files: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NON_PRODUCTION_FILES)
    )

    def validate_runtime(self) -> None:
        """Validate settings the service cannot run without."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.github_user:
            violations.append("GITHUB_USER must name the repository owner")
        if not self.github_repo:
            violations.append("GITHUB_REPO must name the repository")
        if not self.working_tree.is_dir():
            violations.append(f"WORKING_TREE {self.working_tree} is not a directory")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
