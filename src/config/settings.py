"""
Application settings and configuration management.
"""

import os
import copy
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
import yaml
from dotenv import load_dotenv

from config.account_mapping import AccountClassifier, DEFAULT_ACCOUNT_RANGES

load_dotenv()


class Settings:
    """Application settings and configuration."""

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        self.project_root = Path(__file__).parent.parent.parent
        self.config_dir = Path(config_dir) if config_dir else self.project_root / "config"
        self.logger = logging.getLogger(__name__)

        # Initialize configuration containers
        self.thresholds = {}
        self.account_classes = []

        # Load configuration files
        self._load_config()
        self._validate_config()
        self.account_classifier = AccountClassifier.from_config(self.account_classes)

    def _load_config(self):
        """Load configuration from YAML files with error handling."""
        self.thresholds = self._load_yaml_config(
            self.config_dir / "thresholds.yaml",
            self._default_thresholds,
            "thresholds"
        )

        account_config = self._load_yaml_config(
            self.config_dir / "account_classes.yaml",
            self._default_account_classes,
            "account classes"
        )
        self.account_classes = account_config.get("account_classes", [])

    def _load_yaml_config(self, file_path: Path, default_func, config_name: str) -> Dict[str, Any]:
        """Load a YAML config file with fallback to defaults."""
        try:
            if file_path.exists():
                with open(file_path, 'r', encoding='utf-8') as f:
                    config = yaml.safe_load(f)
                    if config is None:
                        self.logger.warning(f"Empty {config_name} file, using defaults")
                        return default_func()
                    if not isinstance(config, dict):
                        self.logger.error(f"{config_name} file must contain a mapping, using defaults")
                        return default_func()
                    self.logger.info(f"Loaded {config_name} from {file_path}")
                    return self._merge_defaults(default_func(), config)
            else:
                self.logger.warning(f"{config_name} file not found at {file_path}, using defaults")
                return default_func()
        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing {config_name} YAML: {e}, using defaults")
            return default_func()
        except OSError as e:
            self.logger.error(f"Error loading {config_name}: {e}, using defaults")
            return default_func()

    def _merge_defaults(self, defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay loaded values onto defaults, section by section."""
        merged = copy.deepcopy(defaults)
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._merge_defaults(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _validate_config(self):
        """Validate loaded configuration."""
        try:
            self._validate_thresholds()
            self._validate_account_classes()
            self.logger.info("Configuration validation completed successfully")
        except Exception as e:
            self.logger.error(f"Configuration validation failed: {e}")
            raise

    def _validate_thresholds(self):
        """Validate thresholds configuration."""
        required_sections = ['materiality', 'evidence', 'trend', 'forecast']
        for section in required_sections:
            if section not in self.thresholds:
                raise ValueError(f"Missing required threshold section: {section}")

        for key in ['absolute', 'percent']:
            value = self.thresholds['materiality'].get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValueError(f"Materiality threshold {key} must be numeric")
            if value < 0:
                raise ValueError(f"Materiality threshold {key} must not be negative")

        confidence = self.thresholds['forecast'].get('confidence_level')
        if confidence not in (0.9, 0.95):
            raise ValueError(f"Forecast confidence level must be 0.90 or 0.95, got {confidence}")

    def _validate_account_classes(self):
        """Validate account class table."""
        if not isinstance(self.account_classes, list) or not self.account_classes:
            raise ValueError("account_classes must be a non-empty list")
        # Overlap and key checks live in the classifier itself
        AccountClassifier.from_config(self.account_classes)

    def _default_thresholds(self) -> Dict[str, Any]:
        """Default materiality, trend and forecast thresholds."""
        return {
            "materiality": {
                "absolute": float(os.getenv("MATERIALITY_ABSOLUTE", "5000")),
                "percent": float(os.getenv("MATERIALITY_PERCENT", "10")),
            },
            "evidence": {
                "top_bookings": 10,
                "comment_bookings": 3,
                "pattern_bookings": 5,
                "detail_limit": 15,
                "cost_center_top_accounts": 3,
            },
            "trend": {
                "volatility_cv": 0.5,
                "stable_slope_factor": 0.1,
                "anomaly_sigma": 2.0,
                "moving_average_window": 3,
                "moving_average_confidence": 0.6,
                "account_limit": 50,
                "cost_center_limit": 20,
                "critical_cagr": 0.2,
                "revenue_critical_cagr": -0.1,
            },
            "forecast": {
                "horizon": 12,
                "confidence_level": 0.95,
                "method": "hybrid",
                "seasonality_detection": True,
                "year_end_uncertainty": 0.15,
                "personnel_keywords": ["personnel", "personalkosten", "salaries", "wages"],
            },
            "currency": "EUR",
        }

    def _default_account_classes(self) -> Dict[str, Any]:
        """Default account number ranges."""
        return {
            "account_classes": [
                {"name": r.name, "start": r.start, "end": r.end} for r in DEFAULT_ACCOUNT_RANGES
            ]
        }

    @property
    def log_level(self) -> str:
        """Logging level."""
        return os.getenv("LOG_LEVEL", "INFO")

    @property
    def currency(self) -> str:
        """Currency code used in generated comments."""
        return self.thresholds.get("currency", "EUR")

    def get_materiality_thresholds(self) -> Dict[str, float]:
        """Get absolute and percentage materiality thresholds."""
        materiality = self.thresholds.get("materiality", {})
        return {
            "absolute": float(materiality.get("absolute", 5000.0)),
            "percent": float(materiality.get("percent", 10.0)),
        }

    def get_evidence_limit(self, name: str, default: int = 10) -> int:
        """Get an evidence list size limit."""
        return int(self.thresholds.get("evidence", {}).get(name, default))

    def get_trend_setting(self, name: str, default: float = 0.0) -> float:
        """Get a trend engine threshold."""
        return self.thresholds.get("trend", {}).get(name, default)

    def get_forecast_setting(self, name: str, default: Any = None) -> Any:
        """Get a rolling forecast default."""
        return self.thresholds.get("forecast", {}).get(name, default)

    def get_personnel_keywords(self) -> List[str]:
        """Account name fragments that mark personnel cost accounts."""
        return [k.lower() for k in self.get_forecast_setting("personnel_keywords", [])]
