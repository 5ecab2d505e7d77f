"""Application configuration using Pydantic settings."""

import json
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Crawler settings, read from the environment and `.env`."""

    # Database
    database_url: str = "sqlite+aiosqlite:///data/catalog.db"
    db_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = True

    # ==========================================================================
    # Target site
    # ==========================================================================
    site_base_url: str = "https://casoca.com.br"
    page_param: str = "p"
    categories_file: Optional[str] = None  # JSON list of {"name", "url"}
    site_profile_file: Optional[str] = None  # JSON extraction profile
    taxonomy_file: Optional[str] = None  # JSON keyword taxonomy

    # ==========================================================================
    # Fetching
    # ==========================================================================
    fetch_mode: str = "direct"  # direct, proxy or headless
    fetch_timeout_seconds: float = 60.0
    fetch_max_attempts: int = 5
    rate_limit_base_delay_seconds: float = 60.0  # Multiplied by attempt number
    server_error_delay_seconds: float = 30.0
    transport_error_delay_seconds: float = 20.0  # Multiplied by attempt number
    max_backoff_seconds: float = 600.0

    # Per-domain spacing between requests, shared by all categories
    min_request_interval_seconds: float = 1.0
    request_jitter_seconds: float = 0.5

    # Rendering proxy (ScraperAPI-compatible)
    scraper_api_key: str = ""
    scraper_api_endpoint: str = "https://api.scraperapi.com"
    scraper_api_render: bool = True
    scraper_api_country_code: str = "br"
    scraper_api_premium: bool = False

    # Headless browser
    headless_wait_until: str = "networkidle"
    headless_settle_seconds: float = 2.0
    headless_challenge_wait_seconds: float = 10.0

    # ==========================================================================
    # Crawl loop
    # ==========================================================================
    max_pages_per_category: int = 500
    empty_page_threshold: int = 3
    fetch_failure_threshold: int = 3
    checkpoint_every: int = 1  # Save progress every N pages
    checkpoint_file: str = "data/crawl_checkpoint.json"
    min_page_delay_seconds: float = 1.0
    max_page_delay_seconds: float = 3.0
    category_delay_seconds: float = 3.0
    max_parallel_categories: int = 2
    skip_completed_categories: bool = True

    # ==========================================================================
    # Persistence
    # ==========================================================================
    skip_existing: bool = False
    max_name_length: int = 200
    keep_items_without_link: bool = True
    keep_items_without_image: bool = True

    # Image mirroring
    mirror_images: bool = True
    image_storage: str = "local"  # local or supabase
    image_dir: str = "data/images"
    image_extension: str = "jpg"
    image_download_timeout_seconds: float = 20.0
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_bucket: str = "product-images"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class CategoryTarget(BaseModel):
    """A catalog category to crawl."""

    name: str
    url: str

    def absolute_url(self, base_url: str) -> str:
        """Resolve the category URL against the site origin."""
        return urljoin(base_url.rstrip("/") + "/", self.url)


# Category pages of the Casoca catalog
DEFAULT_CATEGORIES: list[dict[str, str]] = [
    {"name": "Iluminação", "url": "iluminacao.html"},
    {"name": "Móveis", "url": "moveis.html"},
    {"name": "Acessórios de Decoração", "url": "acessorios-de-decoracao.html"},
    {"name": "Louças e Metais", "url": "loucas-e-metais.html"},
    {"name": "Eletros", "url": "eletros.html"},
    {"name": "Portas e Janelas", "url": "portas-e-janelas.html"},
    {"name": "Escritório", "url": "escritorio.html"},
    {"name": "Quarto Infantil", "url": "quarto-infantil.html"},
    {"name": "Móveis para Área Externa", "url": "moveis/moveis-para-area-externa.html"},
    {"name": "Cortinas e Persianas", "url": "acessorios-de-decoracao/cortinas-e-persianas.html"},
    {"name": "Vegetação", "url": "vegetacao.html"},
    {"name": "Papéis de Parede", "url": "revestimentos/revestimentos-de-parede/papeis-de-parede.html"},
    {"name": "Tapetes", "url": "acessorios-de-decoracao/tapetes.html"},
    {"name": "Decoração", "url": "decoracao.html"},
    {"name": "Mesa Posta", "url": "mesa-posta.html"},
]


def load_categories(settings: Settings) -> list[CategoryTarget]:
    """
    Load the categories to crawl.

    Uses `settings.categories_file` when set, otherwise the built-in list.

    Raises:
        FileNotFoundError: If the configured categories file does not exist
    """
    if settings.categories_file:
        path = Path(settings.categories_file)
        if not path.exists():
            raise FileNotFoundError(f"Categories file not found at {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    else:
        raw = DEFAULT_CATEGORIES

    return [CategoryTarget(**item) for item in raw]
