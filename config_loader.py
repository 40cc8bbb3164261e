#!/usr/bin/env python3
"""
Config loader for the Instagram comment pipeline.
Priority: .env > config.json > defaults.
"""

import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in TRUE_VALUES


def _env_optional_int(name: str):
    value = os.getenv(name, "").strip().lower()
    if value in {"none", "null", ""}:
        return None
    return int(value)


class ConfigLoader:
    def __init__(self, config_file: str = "config.json"):
        self.config_file = Path(config_file)
        self.config = self._load_config()

    def _load_config(self):
        config = {
            "instagram": {
                "authentication": {
                    "cookies": {
                        "sessionid": "YOUR_SESSIONID_HERE",
                        "csrftoken": "YOUR_CSRFTOKEN_HERE",
                        "ds_user_id": "YOUR_DS_USER_ID_HERE",
                    },
                    "headers": {
                        "X-IG-App-ID": "936619743392459",
                        "Referer": "https://www.instagram.com/",
                        "User-Agent": (
                            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                            "AppleWebKit/537.36 (KHTML, like Gecko) "
                            "Chrome/121.0.0.0 Safari/537.36"
                        ),
                    },
                },
                "endpoints": {
                    "graphql": {
                        "url": "https://www.instagram.com/graphql/query/",
                        "doc_ids": [
                            "7742571219201978",
                            "8845758582119845",
                            "17873440459141021",
                        ],
                    },
                    "rest_comments": {
                        "url": "https://www.instagram.com/api/v1/media/shortcode/{shortcode}/comments/",
                    },
                    "post_page": {
                        "url": "https://www.instagram.com/p/{shortcode}/",
                    },
                },
                "settings": {
                    "requests_per_minute": 8,
                    "request_jitter_ratio": 0.2,
                    "timeout": 30,
                    "max_comments": 400,
                    "graphql_max_pages": 40,
                    "rest_max_pages": 20,
                    "deep_search_max_depth": 14,
                    "deep_search_max_comments": 500,
                    "dirty_text_max_length": 400,
                    "html_fallback": True,
                    "save_debug_html": True,
                    "save_raw_responses": "errors",
                    "raw_responses_keep": 200,
                },
                "proxy": {
                    "http": None,
                    "https": None,
                },
            }
        }

        if self.config_file.exists():
            with open(self.config_file, "r", encoding="utf-8") as file:
                json_config = json.load(file)
                self._deep_update(config, json_config)

        ig = config["instagram"]

        # Cookie overrides
        if os.getenv("IG_SESSIONID"):
            ig["authentication"]["cookies"]["sessionid"] = os.getenv("IG_SESSIONID")
        if os.getenv("IG_CSRFTOKEN"):
            ig["authentication"]["cookies"]["csrftoken"] = os.getenv("IG_CSRFTOKEN")
        if os.getenv("IG_DS_USER_ID"):
            ig["authentication"]["cookies"]["ds_user_id"] = os.getenv("IG_DS_USER_ID")

        # Header overrides
        if os.getenv("IG_X_IG_APP_ID"):
            ig["authentication"]["headers"]["X-IG-App-ID"] = os.getenv("IG_X_IG_APP_ID")
        if os.getenv("IG_USER_AGENT"):
            ig["authentication"]["headers"]["User-Agent"] = os.getenv("IG_USER_AGENT")
        if os.getenv("IG_REFERER"):
            ig["authentication"]["headers"]["Referer"] = os.getenv("IG_REFERER")

        # Endpoint overrides
        if os.getenv("IG_GRAPHQL_DOC_IDS"):
            doc_ids = [item.strip() for item in os.getenv("IG_GRAPHQL_DOC_IDS").split(",")]
            ig["endpoints"]["graphql"]["doc_ids"] = [item for item in doc_ids if item]

        # Proxy overrides
        if os.getenv("HTTP_PROXY"):
            ig["proxy"]["http"] = os.getenv("HTTP_PROXY")
        if os.getenv("HTTPS_PROXY"):
            ig["proxy"]["https"] = os.getenv("HTTPS_PROXY")

        # Settings overrides
        settings = ig["settings"]
        if os.getenv("IG_REQUESTS_PER_MINUTE"):
            settings["requests_per_minute"] = float(os.getenv("IG_REQUESTS_PER_MINUTE"))
        if os.getenv("IG_JITTER_RATIO"):
            settings["request_jitter_ratio"] = float(os.getenv("IG_JITTER_RATIO"))
        if os.getenv("IG_TIMEOUT"):
            settings["timeout"] = int(os.getenv("IG_TIMEOUT"))
        if os.getenv("IG_MAX_COMMENTS"):
            settings["max_comments"] = int(os.getenv("IG_MAX_COMMENTS"))
        if os.getenv("IG_GRAPHQL_MAX_PAGES"):
            settings["graphql_max_pages"] = int(os.getenv("IG_GRAPHQL_MAX_PAGES"))
        if os.getenv("IG_REST_MAX_PAGES"):
            settings["rest_max_pages"] = int(os.getenv("IG_REST_MAX_PAGES"))
        if os.getenv("IG_DEEP_SEARCH_MAX_DEPTH"):
            settings["deep_search_max_depth"] = int(os.getenv("IG_DEEP_SEARCH_MAX_DEPTH"))
        if os.getenv("IG_DEEP_SEARCH_MAX_COMMENTS"):
            settings["deep_search_max_comments"] = _env_optional_int("IG_DEEP_SEARCH_MAX_COMMENTS")
        if os.getenv("IG_DIRTY_TEXT_MAX_LENGTH"):
            settings["dirty_text_max_length"] = int(os.getenv("IG_DIRTY_TEXT_MAX_LENGTH"))
        if os.getenv("IG_HTML_FALLBACK"):
            settings["html_fallback"] = _env_flag("IG_HTML_FALLBACK")
        if os.getenv("IG_SAVE_DEBUG_HTML"):
            settings["save_debug_html"] = _env_flag("IG_SAVE_DEBUG_HTML")
        if os.getenv("IG_SAVE_RAW_RESPONSES"):
            settings["save_raw_responses"] = os.getenv("IG_SAVE_RAW_RESPONSES").strip().lower()
        if os.getenv("IG_RAW_RESPONSES_KEEP"):
            settings["raw_responses_keep"] = int(os.getenv("IG_RAW_RESPONSES_KEEP"))

        return config

    def _deep_update(self, base, update):
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_update(base[key], value)
            else:
                base[key] = value

    def get(self, key_path, default=None):
        keys = key_path.split(".")
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_proxy_settings(self):
        proxy = self.config.get("instagram", {}).get("proxy", {})
        if proxy.get("http") or proxy.get("https"):
            return {
                "http": proxy.get("http"),
                "https": proxy.get("https"),
            }
        return None

    def validate(self):
        cookies = self.get("instagram.authentication.cookies", {})
        required = ["sessionid"]
        missing = [name for name in required if not cookies.get(name) or str(cookies.get(name)).startswith("YOUR_")]
        if missing:
            logger.warning("Missing required cookies: %s", ", ".join(missing))
            return False
        return True
