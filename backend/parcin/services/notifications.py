"""
Reservation Notifications

Builds the confirmation / payment-failure emails and hands them to the
email provider. Sending is fire-and-forget: every failure is logged and
reported in the SendResult, never raised, so a broken mail provider cannot
fail a payment webhook.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional
from zoneinfo import ZoneInfo

from parcin.core.utils import ensure_aware, to_money
from parcin.models import ParkingLot, Reservation, User
from parcin.services.email_provider import SendGridProvider, SendResult

logger = logging.getLogger(__name__)

DISPLAY_TIMEZONE = ZoneInfo("America/Sao_Paulo")


@dataclass
class ReservationEmailDetails:
    reservation_id: str
    user_email: str
    user_name: str
    lot_name: str
    lot_address: str
    car_plate: str
    arrival_window_start: datetime
    arrival_window_end: datetime
    reservation_fee_amount: Decimal
    state: str

    @classmethod
    def from_models(cls, reservation: Reservation, lot: ParkingLot, user: User) -> "ReservationEmailDetails":
        return cls(
            reservation_id=str(reservation.id),
            user_email=user.email,
            user_name=user.name,
            lot_name=lot.name,
            lot_address=lot.address,
            car_plate=reservation.car_plate,
            arrival_window_start=reservation.arrival_window_start,
            arrival_window_end=reservation.arrival_window_end,
            reservation_fee_amount=to_money(reservation.reservation_fee_amount),
            state=getattr(reservation.state, "value", reservation.state),
        )


def _format_time(value: datetime) -> str:
    return ensure_aware(value).astimezone(DISPLAY_TIMEZONE).strftime("%d/%m/%Y %H:%M")


def _format_money(value: Decimal) -> str:
    return f"R$ {to_money(value):.2f}".replace(".", ",")


def _layout(header_color: str, body: str) -> str:
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: {header_color}; color: white; padding: 20px; text-align: center;">
    <h1 style="margin: 0;">Parcin</h1>
  </div>
  <div style="padding: 30px; background-color: #f8fafc;">
    {body}
  </div>
  <div style="background-color: #f3f4f6; padding: 20px; text-align: center; color: #6b7280;">
    <p style="margin: 0;">Parcin. Todos os direitos reservados.</p>
  </div>
</div>
"""


def _details_block(details: ReservationEmailDetails, border_color: str) -> str:
    return f"""
<div style="background-color: white; padding: 20px; border-radius: 8px; margin-bottom: 20px; border-left: 4px solid {border_color};">
  <h3 style="color: #1f2937; margin-top: 0;">Detalhes da Reserva</h3>
  <p><strong>Estacionamento:</strong> {escape(details.lot_name)}</p>
  <p><strong>Endereço:</strong> {escape(details.lot_address)}</p>
  <p><strong>Placa:</strong> {escape(details.car_plate)}</p>
  <p><strong>Taxa de Reserva:</strong> {_format_money(details.reservation_fee_amount)}</p>
  <p><strong>ID da Reserva:</strong> {escape(details.reservation_id)}</p>
</div>
"""


def render_confirmation_email(details: ReservationEmailDetails) -> str:
    body = f"""
<h2 style="color: #1f2937;">Reserva Confirmada!</h2>
<p style="color: #4b5563;">Olá {escape(details.user_name)}, sua reserva foi confirmada com sucesso!</p>
{_details_block(details, "#10b981")}
<div style="background-color: #fef3c7; padding: 15px; border-radius: 8px; margin-bottom: 20px;">
  <h4 style="color: #92400e; margin-top: 0;">Janela de Chegada</h4>
  <p style="color: #92400e; margin: 0;">
    <strong>De:</strong> {_format_time(details.arrival_window_start)}<br>
    <strong>Até:</strong> {_format_time(details.arrival_window_end)}
  </p>
</div>
<p style="color: #dc2626;">
  <strong>Importante:</strong> chegue dentro da janela de tempo para evitar que sua
  reserva seja marcada como não comparecimento.
</p>
"""
    return _layout("#3b82f6", body)


def render_payment_failure_email(details: ReservationEmailDetails) -> str:
    body = f"""
<h2 style="color: #1f2937;">Falha no Pagamento</h2>
<p style="color: #4b5563;">
  Olá {escape(details.user_name)}, infelizmente houve um problema com o pagamento da sua reserva.
</p>
{_details_block(details, "#ef4444")}
<p style="color: #92400e;">
  Você pode tentar fazer uma nova reserva ou entrar em contato conosco para mais informações.
</p>
"""
    return _layout("#ef4444", body)


class ReservationNotifier:
    """Sends reservation lifecycle emails. Never raises."""

    CONFIRMATION_SUBJECT = "Reserva Confirmada - Parcin"
    PAYMENT_FAILURE_SUBJECT = "Falha no Pagamento - Parcin"

    def __init__(self, provider: Optional[SendGridProvider] = None):
        self.provider = provider or SendGridProvider()

    async def close(self):
        await self.provider.close()

    async def send_reservation_confirmation(self, details: ReservationEmailDetails) -> SendResult:
        return await self._send(
            details,
            self.CONFIRMATION_SUBJECT,
            render_confirmation_email,
        )

    async def send_payment_failure(self, details: ReservationEmailDetails) -> SendResult:
        return await self._send(
            details,
            self.PAYMENT_FAILURE_SUBJECT,
            render_payment_failure_email,
        )

    async def _send(self, details: ReservationEmailDetails, subject: str, render) -> SendResult:
        try:
            result = await self.provider.send_email(
                to_email=details.user_email,
                subject=subject,
                html=render(details),
                to_name=details.user_name,
                reservation_id=details.reservation_id,
            )
        except Exception as e:
            logger.error(f"Failed to send '{subject}' for reservation {details.reservation_id}: {e}")
            return SendResult(success=False, error=str(e))

        if result.success:
            logger.info(f"Sent '{subject}' for reservation {details.reservation_id}")
        else:
            logger.warning(
                f"Email '{subject}' for reservation {details.reservation_id} not sent: {result.error}"
            )
        return result
