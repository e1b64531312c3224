"""
Default notification templates seeded into new repositories.
"""
from typing import List

from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.template import NotificationTemplate
from emergency_dispatch.utils.template_rendering import find_placeholders

TECHNICIAN_ALERT_TEMPLATE = "emergency_technician_alert"
CUSTOMER_CONFIRMATION_TEMPLATE = "emergency_customer_confirmation"
STATUS_UPDATE_TEMPLATE = "emergency_status_update"

_TEMPLATE_BODIES = {
    (TECHNICIAN_ALERT_TEMPLATE, Language.EN): (
        "URGENT: {industry} emergency from {customer_name} at {address}. "
        "Issue: {issue}. Contact: {customer_phone}. Business: {business_name}. "
        "Respond immediately."
    ),
    (CUSTOMER_CONFIRMATION_TEMPLATE, Language.EN): (
        "URGENT: Emergency {industry} service dispatched. Technician will arrive "
        "within {eta}. Call {contact_phone} for updates. {business_name} is here to help."
    ),
    (CUSTOMER_CONFIRMATION_TEMPLATE, Language.ES): (
        "URGENTE: Servicio de emergencia de {industry} despachado. Técnico llegará "
        "en {eta}. Llame {contact_phone} para actualizaciones. {business_name} está "
        "aquí para ayudarle."
    ),
    (STATUS_UPDATE_TEMPLATE, Language.EN): (
        "Update: Your technician is en route. Status: {status}. ETA: {eta}. "
        "Call {business_name} if you have questions."
    ),
    (STATUS_UPDATE_TEMPLATE, Language.ES): (
        "Actualización: Su técnico está en camino. Estado: {status}. Tiempo "
        "estimado: {eta}. Llame a {business_name} si tiene preguntas."
    ),
    ("appointment_confirmation", Language.EN): (
        "Hi {customer_name}! Your {service_type} appointment is confirmed for "
        "{appointment_date} at {appointment_time}. {business_name}. Reply STOP to opt out."
    ),
    ("appointment_confirmation", Language.ES): (
        "¡Hola {customer_name}! Su cita de {service_type} está confirmada para el "
        "{appointment_date} a las {appointment_time}. {business_name}. Responda STOP para cancelar."
    ),
    ("appointment_reminder", Language.EN): (
        "Reminder: {customer_name}, your {service_type} appointment is on "
        "{appointment_date} at {appointment_time}. {business_name}"
    ),
    ("appointment_reminder", Language.ES): (
        "Recordatorio: {customer_name}, su cita de {service_type} es el "
        "{appointment_date} a las {appointment_time}. {business_name}"
    ),
    ("follow_up", Language.EN): (
        "Hi {customer_name}, thank you for choosing {business_name} for your "
        "{service_type} service. Reply if anything still needs attention."
    ),
    ("follow_up", Language.ES): (
        "Hola {customer_name}, gracias por elegir a {business_name} para su servicio "
        "de {service_type}. Responda si algo aún necesita atención."
    ),
    ("survey", Language.EN): (
        "How was your {service_type} service from {business_name}, {customer_name}? "
        "Rate us 1-5 stars by replying with a number."
    ),
    ("survey", Language.ES): (
        "¿Cómo fue su servicio de {service_type} de {business_name}, {customer_name}? "
        "Califíquenos de 1 a 5 estrellas respondiendo con un número."
    ),
}


def default_templates() -> List[NotificationTemplate]:
    """Fresh copies of the default templates."""
    return [
        NotificationTemplate(
            template_key=key,
            language_code=language,
            body=body,
            variables=find_placeholders(body),
        )
        for (key, language), body in _TEMPLATE_BODIES.items()
    ]
