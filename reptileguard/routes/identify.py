from fastapi import APIRouter, Depends

from reptileguard.models.report import IdentifyIn, ReptileData
from reptileguard.models.user import UserProfile
from reptileguard.services import vision
from reptileguard.services.auth import get_current_principal

router = APIRouter(tags=["identify"])


@router.post("/identify", response_model=ReptileData)
def identify(body: IdentifyIn, principal: UserProfile = Depends(get_current_principal)):
    """
    Identify the reptile in one or more photos of the same animal.
    A 502 means the classifier failed; the client should ask for a new photo.
    """
    return vision.identify_reptile(body.images)
