from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from quimita.database import get_db
from quimita import models, schemas
from quimita.auth import get_current_active_user
from quimita.reconciliation import SubscriptionCoordinator, get_subscription_coordinator
from quimita.subscriptions import record_from_user

router = APIRouter(prefix="/user", tags=["user"])

# Wire name -> column
PROFILE_FIELDS = {
    "nome": "full_name",
    "cpf": "cpf",
    "telefone": "phone",
    "endereco": "address",
    "complemento": "address_complement",
    "cep": "postal_code",
    "cidade": "city",
    "estado": "state",
}


def build_profile_response(user: models.User) -> schemas.ProfileResponse:
    record = record_from_user(user)
    return schemas.ProfileResponse(
        id=user.id,
        email=user.email,
        **{wire: getattr(user, column) for wire, column in PROFILE_FIELDS.items()},
        assinatura=record.active,
        assinatura_status=record.status,
        assinatura_id=record.external_id,
        assinatura_em_andamento=record.in_progress,
        assinatura_criada_em=record.created_at,
        assinatura_atualizada_em=record.updated_at,
    )


@router.get("/perfil", response_model=schemas.ProfileResponse)
def get_profile(
    current_user: models.User = Depends(get_current_active_user),
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    """Current user's profile, with a pending subscription refreshed from Mercado Pago first."""
    coordinator.reconcile(current_user)
    return build_profile_response(current_user)


@router.put("/perfil", response_model=schemas.ProfileResponse)
def update_profile(
    profile_update: schemas.ProfileUpdate,
    current_user: models.User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    update_data = profile_update.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        if isinstance(value, str):
            value = value.strip() or None
        setattr(current_user, PROFILE_FIELDS[field], value)

    db.commit()
    db.refresh(current_user)
    return build_profile_response(current_user)


@router.post("/verifica-assinatura", response_model=schemas.SubscriptionStatusResponse)
def check_subscription(
    current_user: models.User = Depends(get_current_active_user),
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    record = coordinator.reconcile(current_user)
    return {"assinatura": record.active, "status": record.status}
