"""
Screenshot Client
Desktop and mobile captures via shot.screenshotapi.net (free tier, ~33/day)
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseProviderClient, ProviderResult
from app.utils.exceptions import ParseError
from app.utils.url_validator import extract_domain

logger = logging.getLogger(__name__)

SHOT_API_BASE = "https://shot.screenshotapi.net/screenshot"

VIEWPORTS = {
    "desktop": (1920, 1080),
    "mobile": (375, 667),
}


@dataclass
class ScreenshotResult(ProviderResult):
    device: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    url: Optional[str] = None


class ScreenshotClient(BaseProviderClient):
    """Captures a page as PNG and stores it under SCREENSHOTS_DIR"""

    name = "screenshots"
    quota_service = "screenshots"
    timeout = 30.0

    @property
    def screenshots_dir(self) -> str:
        return self.settings.SCREENSHOTS_DIR

    @staticmethod
    def build_params(url: str, device: str, full_page: bool = True) -> Dict[str, str]:
        width, height = VIEWPORTS[device]
        return {
            "url": url,
            "width": str(width),
            "height": str(height),
            "full_page": "true" if full_page else "false",
            "format": "png",
            "quality": "80",
            "delay": "2000",
            "timeout": "25000",
        }

    def _save(self, image: bytes, url: str, device: str) -> str:
        os.makedirs(self.screenshots_dir, exist_ok=True)
        domain = extract_domain(url) or "unknown"
        safe_domain = re.sub(r"[^a-zA-Z0-9.-]", "", domain).lower()
        file_name = f"{safe_domain}_{device}_{int(time.time() * 1000)}.png"
        file_path = os.path.join(self.screenshots_dir, file_name)
        with open(file_path, "wb") as handle:
            handle.write(image)
        if os.path.getsize(file_path) == 0:
            raise ParseError("Saved screenshot is empty")
        return file_name

    async def take_screenshot(self, url: str, device: str = "desktop", full_page: bool = True) -> ScreenshotResult:
        if device not in VIEWPORTS:
            return ScreenshotResult(success=False, error=f"Unknown device: {device}", device=device)

        validation = self.validate(url)
        if not validation.valid:
            return ScreenshotResult(success=False, error=validation.error, device=device)
        safe_url = validation.normalized_url

        try:
            quota_error = await self.check_quota()
            if quota_error:
                return ScreenshotResult(success=False, error=quota_error, quota_reached=True, device=device)

            async def fetch() -> bytes:
                response = await self.request(
                    SHOT_API_BASE,
                    params=self.build_params(safe_url, device, full_page),
                    headers={"Accept": "image/png,image/jpeg,image/*"},
                )
                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("image/"):
                    raise ParseError(f"Unexpected response type: {content_type or 'none'}")
                if not response.content:
                    raise ParseError("Empty response from screenshot API")
                return response.content

            logger.info(f"Capturing {device} screenshot of {safe_url}")
            image = await self.metered_call(fetch)
            file_name = await asyncio.to_thread(self._save, image, safe_url, device)
        except Exception as e:
            return self.failure(ScreenshotResult, e, device=device)

        logger.info(f"Screenshot saved: {file_name}")
        return ScreenshotResult(
            success=True,
            device=device,
            file_path=os.path.join(self.screenshots_dir, file_name),
            file_name=file_name,
            url=f"/screenshots/{file_name}",
        )

    async def take_responsive_screenshots(self, url: str) -> Dict[str, Any]:
        desktop, mobile = await asyncio.gather(
            self.take_screenshot(url, "desktop"),
            self.take_screenshot(url, "mobile"),
        )
        return {
            "desktop": desktop,
            "mobile": mobile,
            "both_succeeded": desktop.success and mobile.success,
        }
