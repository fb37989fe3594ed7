from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    nome: str
    email: EmailStr
    senha: str
    telefone: Optional[str] = None
    cpf: Optional[str] = None


class UserLogin(BaseModel):
    email: EmailStr
    senha: str


class Token(BaseModel):
    token: str


class ProfileUpdate(BaseModel):
    nome: Optional[str] = None
    cpf: Optional[str] = None
    telefone: Optional[str] = None
    endereco: Optional[str] = None
    complemento: Optional[str] = None
    cep: Optional[str] = None
    cidade: Optional[str] = None
    estado: Optional[str] = None


class ProfileResponse(BaseModel):
    id: int
    nome: Optional[str] = None
    email: str
    cpf: Optional[str] = None
    telefone: Optional[str] = None
    endereco: Optional[str] = None
    complemento: Optional[str] = None
    cep: Optional[str] = None
    cidade: Optional[str] = None
    estado: Optional[str] = None
    assinatura: bool
    assinatura_status: str
    assinatura_id: Optional[str] = None
    assinatura_em_andamento: bool
    assinatura_criada_em: Optional[datetime] = None
    assinatura_atualizada_em: Optional[datetime] = None


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordReset(BaseModel):
    token: str
    senha: str


class MessageResponse(BaseModel):
    msg: str


class CheckoutResponse(BaseModel):
    init_point: str


class CancelResponse(BaseModel):
    success: bool


class SubscriptionStatusResponse(BaseModel):
    assinatura: bool
    status: str
