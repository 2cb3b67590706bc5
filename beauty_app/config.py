import os
from dataclasses import dataclass


@dataclass
class Settings:
	api_host: str = os.getenv("API_HOST", "127.0.0.1")
	api_port: int = int(os.getenv("API_PORT", "8000"))

	# Gemini API settings
	gemini_api_key: str | None = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
	gemini_image_model: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
	gemini_text_model: str = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
	gemini_timeout_ms: int = int(os.getenv("GEMINI_TIMEOUT_MS", "120000"))

	# Capture settings
	max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
	camera_index: int = int(os.getenv("CAMERA_INDEX", "0"))
	camera_width: int = int(os.getenv("CAMERA_WIDTH", "1280"))
	camera_height: int = int(os.getenv("CAMERA_HEIGHT", "720"))
	jpeg_quality: int = int(os.getenv("JPEG_QUALITY", "90"))

	# Product links point at the retailer search page, keyed by item name
	product_search_url: str = os.getenv("PRODUCT_SEARCH_URL", "https://global.oliveyoung.com/display/search?query=")

	snapshot_dir: str = os.getenv("SNAPSHOT_DIR", "snapshots")
	public_base_url: str = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000/")

	log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
