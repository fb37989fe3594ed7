import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from quimita.database import get_db
from quimita import models, schemas
from quimita.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    validate_password_strength,
)
from quimita.billing_gateway import FRONTEND_URL
from quimita.email_service import send_password_reset_email
from quimita.password_reset import consume_reset_token, issue_reset_token
from quimita.subscriptions import apply_record, new_record

router = APIRouter(prefix="/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


@router.post("/register", response_model=schemas.Token)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    email = user.email.lower().strip()

    db_user = db.query(models.User).filter(models.User.email == email).first()
    if db_user:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email já cadastrado")

    password_error = validate_password_strength(user.senha)
    if password_error:
        raise HTTPException(status_code=400, detail=password_error)

    db_user = models.User(
        email=email,
        hashed_password=get_password_hash(user.senha),
        full_name=user.nome,
        phone=user.telefone,
        cpf=user.cpf,
    )
    apply_record(db_user, new_record())
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("Registered user %s", db_user.id)

    return {"token": create_access_token(data={"sub": db_user.email})}


@router.post("/login", response_model=schemas.Token)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = authenticate_user(db, credentials.email.lower().strip(), credentials.senha)
    if user is None:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    if user is False:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Senha inválida",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {"token": create_access_token(data={"sub": user.email})}


@router.post("/forgot-password", response_model=schemas.MessageResponse)
def forgot_password(request: schemas.PasswordResetRequest, db: Session = Depends(get_db)):
    """
    Request password reset. Sends a password reset email.
    """
    generic_message = {
        "msg": "Se existir uma conta com este email, enviamos um link para redefinir a senha."
    }
    email = request.email.lower().strip()

    user = db.query(models.User).filter(models.User.email == email).first()
    if not user:
        # Don't reveal if email exists or not
        return generic_message

    reset_token = issue_reset_token(user)
    db.commit()

    if not send_password_reset_email(user.email, reset_token, FRONTEND_URL):
        raise HTTPException(
            status_code=500,
            detail="Não foi possível enviar o email de redefinição. Tente novamente mais tarde.",
        )
    return generic_message


@router.post("/reset-password", response_model=schemas.MessageResponse)
def reset_password(request: schemas.PasswordReset, db: Session = Depends(get_db)):
    """
    Reset password using the reset token.
    """
    password_error = validate_password_strength(request.senha)
    if password_error:
        raise HTTPException(status_code=400, detail=password_error)

    user = consume_reset_token(db, request.token)
    if user is None:
        raise HTTPException(status_code=400, detail="Token de redefinição inválido ou expirado")

    user.hashed_password = get_password_hash(request.senha)
    db.commit()
    logger.info("Password reset for user %s", user.id)

    return {"msg": "Senha redefinida com sucesso."}
