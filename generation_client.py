import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from data_uri import is_data_uri
from errors import GenerationFailed
from models.generation import OutfitRecommendation

logger = logging.getLogger("GenerationClient")

TRY_ON_ENDPOINT = "virtual-try-on"
CATALOG_ENDPOINT = "business-catalog"
RECOMMEND_ENDPOINT = "outfit-recommendations"
TRY_ON_RESULT_KEYS = ("tryOnImageDataUri", "tryOnImage")
CATALOG_RESULT_KEYS = ("catalogImage",)


class GenerationClient:
    """Client for the external image-compositing service.

    Every call is a single POST: there is no retry, because each invocation may
    be billed by the provider.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 180,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def generate_try_on(self, user_photo: str, garment_images: Sequence[str]) -> str:
        """Composite one or more garments onto a self-photo; returns a data URI"""
        payload = {
            "userPhotoDataUri": user_photo,
            "outfitImageDataUris": list(garment_images),
        }
        return await self._generate(TRY_ON_ENDPOINT, payload, TRY_ON_RESULT_KEYS)

    async def generate_catalog(self, mannequin_image: str, product_image: str, style: str) -> str:
        """Dress a mannequin with a product in the requested catalog style; returns a data URI"""
        payload = {
            "catalogStyleDescription": style,
            "mannequinImage": mannequin_image,
            "productImage": product_image,
        }
        return await self._generate(CATALOG_ENDPOINT, payload, CATALOG_RESULT_KEYS)

    async def recommend_outfits(
        self,
        full_body_image: str,
        face_image: str,
        wardrobe_images: Sequence[str],
        style_preferences: str,
    ) -> List[OutfitRecommendation]:
        """Suggest outfits from the user's photos and wardrobe; each comes with a preview image"""
        payload = {
            "fullBodyImageDataUri": full_body_image,
            "faceImageDataUri": face_image,
            "wardrobeItemDataUris": list(wardrobe_images),
            "stylePreferences": style_preferences,
        }
        result = await self._post(RECOMMEND_ENDPOINT, payload)
        items = result.get("recommendations") if isinstance(result, dict) else result
        if not isinstance(items, list):
            raise GenerationFailed("Recommendation response was not a list")

        recommendations = []
        for item in items:
            if not isinstance(item, dict):
                continue
            image = item.get("outfitImageDataUri")
            if not image or not is_data_uri(image):
                logger.warning("Skipping recommendation without a usable image")
                continue
            try:
                confidence = min(1.0, max(0.0, float(item.get("confidenceScore", 0))))
            except (TypeError, ValueError):
                confidence = 0.0
            recommendations.append(
                OutfitRecommendation(
                    description=str(item.get("outfitDescription") or ""),
                    image_data_uri=image,
                    confidence=confidence,
                )
            )
        if not recommendations:
            raise GenerationFailed("Recommendation response contained no usable outfits")
        logger.info(f"Received {len(recommendations)} outfit recommendation(s)")
        return recommendations

    async def _generate(self, endpoint: str, payload: Dict[str, Any], result_keys: Sequence[str]) -> str:
        result = await self._post(endpoint, payload)
        if not isinstance(result, dict):
            result = {}
        for key in result_keys:
            image = result.get(key)
            if image and is_data_uri(image):
                logger.info(f"Generation succeeded ({len(image)} chars)")
                return image
        raise GenerationFailed(f"Generation response contained no image (expected one of {list(result_keys)})")

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{endpoint}"
        logger.info(f"Submitting generation request to {url}")
        try:
            response = await self._client.post(url, json=payload, headers=self._headers, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.error(f"Generation request to {url} failed: {e}")
            raise GenerationFailed(f"Generation service unreachable: {e}") from e

        try:
            result = response.json()
        except ValueError:
            result = None

        upstream = result.get("error") if isinstance(result, dict) else None
        if response.status_code != 200 or upstream:
            message = str(upstream) if upstream else f"status {response.status_code}"
            logger.warning(f"Generation failed: {message}")
            raise GenerationFailed(f"Generation failed: {message}", upstream_message=upstream)
        return result
