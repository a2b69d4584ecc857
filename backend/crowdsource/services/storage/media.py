"""
Image upload helper: stores an image through the ImageStore and records a
media row, optionally linked to a problem.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ...models.db_models import MediaDB, ProblemDB
from ..errors import ProblemNotFoundError, ValidationError
from .image_store import ImageStore, build_filename, decode_image_payload, is_remote_url


logger = logging.getLogger(__name__)


class MediaService:

    def __init__(self, db: Session, image_store: ImageStore):
        self.db = db
        self.image_store = image_store

    def upload_image(
        self,
        image: str,
        filename: Optional[str] = None,
        mime_type: str = "image/jpeg",
        problem_id: Optional[int] = None,
        uploaded_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not image:
            raise ValidationError("No image data provided")
        if problem_id is not None and self.db.get(ProblemDB, problem_id) is None:
            raise ProblemNotFoundError(problem_id)

        payload = image if is_remote_url(image) else decode_image_payload(image, mime_type)
        filename = filename or build_filename(uploaded_by, mime_type=mime_type)
        stored = self.image_store.store(payload, filename, mime_type)

        media = MediaDB(
            problem_id=problem_id,
            url=stored.url,
            storage_key=stored.key,
            mime_type=mime_type,
            size=stored.size,
            uploaded_by=uploaded_by,
        )
        self.db.add(media)
        self.db.commit()
        self.db.refresh(media)

        logger.info(f"Media {media.id} stored at {stored.url} (problem={problem_id})")
        return {
            "id": media.id,
            "url": media.url,
            "key": media.storage_key,
            "mime_type": media.mime_type,
            "size": media.size,
            "problem_id": media.problem_id,
        }
