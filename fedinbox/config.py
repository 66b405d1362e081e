from dynaconf import Dynaconf, Validator

settings = Dynaconf(
    settings_files=["settings.toml", ".secrets.toml"],
    environments=True,
    env_switcher="ENV_FOR_DYNACONF",
    envvar_prefix="FEDINBOX",
    load_dotenv=True,
    validators=[
        Validator("DOMAIN", must_exist=True),
        Validator("ACTOR_USERNAME", must_exist=True),
        Validator("TIMELINE_RETENTION_LIMIT", default=1000),
        Validator("TIMELINE_CLEANUP_INTERVAL", default=86400),
        Validator("REFOLLOW_DELAY_PER_FOLLOW", default=3),
        Validator("REFOLLOW_STARTUP_DELAY", default=30),
        Validator("REFOLLOW_PASS_INTERVAL", default=3600),
        Validator("REFOLLOW_MAX_RETRIES", default=3),
        Validator("REFOLLOW_RETRY_COOLDOWN", default=3600),
        Validator("LINK_PREVIEW_MAX_CONCURRENT", default=3),
        Validator("LINK_PREVIEW_MAX_PER_POST", default=3),
        Validator("LINK_PREVIEW_TIMEOUT", default=10),
        Validator("LINK_PREVIEW_USER_AGENT", default="fedinbox/1.0 (+link preview)"),
    ],
)


def actor_uri() -> str:
    """URI canônica do actor local (ex: https://exemplo.org/users/blog)."""
    return f"https://{settings.domain}/users/{settings.actor_username}"


def publication_url() -> str:
    """URL base das publicações locais, usada para reconhecer conteúdo próprio."""
    url = getattr(settings, "publication_url", None) or f"https://{settings.domain}/"
    return url if url.endswith("/") else f"{url}/"
