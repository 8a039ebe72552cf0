"""Run the sales import API under uvicorn (reloads on code changes in debug mode)."""
import uvicorn

from sales_import.config import settings

if __name__ == "__main__":
    imports = settings.imports
    print(f"Starting {settings.app_name} v{settings.version} ({settings.environment.value})")
    print(f"Database: {settings.db.url.split('@')[-1] if '@' in settings.db.url else settings.db.url}")
    print(
        f"Imports: chunks of {imports.chunk_size}, up to {imports.max_files} files "
        f"of {imports.max_file_size_mb}MB, excluding {', '.join(imports.excluded_quote_prefixes)}"
    )
    print(f"Logging: {settings.logging.level} as {settings.logging.format}")
    print("-" * 50)

    uvicorn.run(
        "sales_import.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["sales_import"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
