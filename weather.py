"""
Cluster weather advisory backed by the Open-Meteo forecast API.

Responses are cached per cluster so the advisory keeps working while the API is
unreachable; when neither the API nor a fresh cache entry is available a fixed
fallback forecast is returned.
"""

import logging
import time
from datetime import date, timedelta
from typing import Any, Dict, Optional

import requests

import config
from catalog import CLUSTERS

logger = logging.getLogger(__name__)

# cluster -> (fetched_at epoch seconds, payload)
_cache: Dict[str, tuple] = {}


def clear_cache():
    _cache.clear()


def describe_weather(code: int) -> Dict[str, str]:
    """WMO weather interpretation code -> label and icon."""
    if code == 0:
        return {"label": "Clear Sky", "icon": "fa-sun"}
    if 1 <= code <= 3:
        return {"label": "Partly Cloudy", "icon": "fa-cloud-sun"}
    if 45 <= code <= 48:
        return {"label": "Foggy", "icon": "fa-smog"}
    if 51 <= code <= 55:
        return {"label": "Drizzle", "icon": "fa-cloud-rain"}
    if 61 <= code <= 65:
        return {"label": "Rain", "icon": "fa-umbrella"}
    if 80 <= code <= 82:
        return {"label": "Showers", "icon": "fa-cloud-showers-heavy"}
    if code >= 95:
        return {"label": "Thunderstorm", "icon": "fa-bolt"}
    return {"label": "Overcast", "icon": "fa-cloud"}


def agro_advice(precip_prob: float, temp_max: float) -> str:
    if precip_prob > 60:
        return "High chance of rain. Avoid applying fertilizer or pesticides today. Ensure drainage channels are clear."
    if precip_prob > 30:
        return "Moderate rain expected. Good day for planting if soil is ready, but delay drying crops outside."
    if temp_max > 28:
        return "High temperatures expected. Ensure irrigation for vegetables and keep livestock hydrated."
    if temp_max < 18:
        return "Cooler temperatures. Monitor young chicks and seedlings for cold stress."
    return "Conditions are stable. Ideal for general field work, weeding, and harvesting."


def fallback_forecast(today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    return {
        "daily": {
            "time": [(today + timedelta(days=i)).isoformat() for i in range(7)],
            "temperature_2m_max": [25, 26, 24, 23, 25, 27, 26],
            "temperature_2m_min": [16, 17, 15, 15, 16, 17, 16],
            "precipitation_probability_max": [30, 40, 60, 20, 10, 5, 10],
            "weathercode": [2, 3, 61, 1, 0, 0, 1],
        },
        "current_weather": {"temperature": 22, "weathercode": 2, "windspeed": 10},
    }


def fetch_weather(cluster: str) -> Dict[str, Any]:
    """
    Returns {"cluster", "source", "data"} where source is one of
    "live", "cache" or "fallback".
    """
    name = cluster if cluster in CLUSTERS else config.DEFAULT_CLUSTER
    coords = CLUSTERS[name]
    params = {
        "latitude": coords["lat"],
        "longitude": coords["lng"],
        "daily": "temperature_2m_max,temperature_2m_min,precipitation_probability_max,weathercode",
        "current_weather": "true",
        "timezone": "Africa/Nairobi",
    }
    try:
        r = requests.get(config.WEATHER_API_URL, params=params, timeout=config.WEATHER_TIMEOUT)
        r.raise_for_status()
        data = r.json()
        _cache[name] = (time.time(), data)
        return {"cluster": name, "source": "live", "data": data}
    except (requests.RequestException, ValueError) as e:
        logger.warning("Weather API unavailable for %s (using fallback): %s", name, e)

    cached = _cache.get(name)
    if cached and time.time() - cached[0] < config.WEATHER_CACHE_TTL:
        return {"cluster": name, "source": "cache", "data": cached[1]}

    return {"cluster": name, "source": "fallback", "data": fallback_forecast()}


def advisory(cluster: str) -> Dict[str, Any]:
    """Forecast plus today's description and farming advice."""
    result = fetch_weather(cluster)
    data = result["data"]
    daily = data.get("daily") or {}
    current = data.get("current_weather") or {}
    try:
        precip = float((daily.get("precipitation_probability_max") or [0])[0] or 0)
        temp_max = float((daily.get("temperature_2m_max") or [0])[0] or 0)
    except (TypeError, ValueError):
        precip, temp_max = 0.0, 0.0
    result["today"] = {
        "condition": describe_weather(int(current.get("weathercode") or 0)),
        "advice": agro_advice(precip, temp_max),
    }
    return result
