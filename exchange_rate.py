#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

USD = "USD"
VES = "VES"
CURRENCIES = (USD, VES)

RATE_SOURCE_CUSTOM = "custom"
RATE_SOURCE_DAILY = "daily"

EXCHANGE_RATE_URL = os.getenv("EXCHANGE_RATE_URL", "https://ve.dolarapi.com/v1/dolares/oficial")
EXCHANGE_RATE_TIMEOUT = float(os.getenv("EXCHANGE_RATE_TIMEOUT", "5"))

logger = logging.getLogger(__name__)


def positive_rate(value: Any) -> Optional[float]:
    """Positive finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rate) or rate <= 0:
        return None
    return rate


def parse_rate_payload(data: Any) -> Optional[float]:
    if not isinstance(data, dict):
        return None
    raw = data.get("promedio") or data.get("valor")
    # the API sends a JSON number; numeric strings are rejected
    if not isinstance(raw, (int, float)):
        return None
    return positive_rate(raw)


def fetch_daily_rate(url: Optional[str] = None, timeout: Optional[float] = None) -> Optional[float]:
    url = url or EXCHANGE_RATE_URL
    timeout = EXCHANGE_RATE_TIMEOUT if timeout is None else timeout
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError):
        logger.exception("Failed to fetch daily rate from %s", url)
        return None

    rate = parse_rate_payload(payload)
    if rate is None:
        logger.warning("Daily rate payload has no usable rate: %r", payload)
        return None
    logger.info("Daily rate loaded: %.2f VES/USD", rate)
    return rate


@dataclass
class RateSettings:
    """
    Rate context of one comparison session:
    - input_currency: default currency for new quote entries
    - rate_source: "daily" (fetched official rate) or "custom" (typed by the user)
    - daily_rate: last fetched daily rate, None when the fetch failed
    """

    input_currency: str = USD
    rate_source: str = RATE_SOURCE_CUSTOM
    custom_rate: Optional[float] = None
    daily_rate: Optional[float] = None

    @property
    def exchange_rate(self) -> Optional[float]:
        if self.input_currency != VES:
            return None
        if self.rate_source == RATE_SOURCE_DAILY and self.daily_rate is not None:
            return self.daily_rate
        return self.custom_rate

    def set_input_currency(self, currency: str) -> None:
        if currency not in CURRENCIES:
            raise ValueError(f"unsupported currency: {currency!r}")
        self.input_currency = currency
        if currency == USD:
            self.daily_rate = None
            self.custom_rate = None
            self.rate_source = RATE_SOURCE_CUSTOM

    def apply_daily_rate(self, rate: Any) -> Optional[float]:
        rate = positive_rate(rate)
        self.daily_rate = rate
        self.rate_source = RATE_SOURCE_DAILY if rate is not None else RATE_SOURCE_CUSTOM
        return rate

    def set_custom_rate(self, rate: Any) -> Optional[float]:
        self.rate_source = RATE_SOURCE_CUSTOM
        self.custom_rate = positive_rate(rate)
        return self.custom_rate

    def reset(self) -> None:
        self.input_currency = USD
        self.rate_source = RATE_SOURCE_CUSTOM
        self.custom_rate = None
        self.daily_rate = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_currency": self.input_currency,
            "rate_source": self.rate_source,
            "custom_rate": self.custom_rate,
            "daily_rate": self.daily_rate,
            "exchange_rate": self.exchange_rate,
        }
