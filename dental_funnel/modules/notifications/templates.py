from string import Template

MESSAGE_TEMPLATES = {
    "otp_code": Template(
        "Hola $name, tu código de acceso a Clínica Miró es: $code. Vence en $minutes minutos."
    ),
    "payment_approved": Template(
        "¡Hola $name! Recibimos tu pago de $$${amount} $currency para tu evaluación. "
        "Ya puedes elegir el horario de tu cita."
    ),
    "appointment_booked": Template(
        "¡Hola $name! Tu evaluación quedó agendada para el $date a las $time. Te esperamos en Clínica Miró."
    ),
}

# variables masked in the stored copy of a message
SECRET_VARIABLES = {
    "otp_code": ("code",),
}

REDACTED = "******"


def render(template_name: str, /, **variables) -> str:
    return MESSAGE_TEMPLATES[template_name].safe_substitute(variables)


def render_redacted(template_name: str, /, **variables) -> str:
    masked = {k: REDACTED for k in SECRET_VARIABLES.get(template_name, ())}
    return render(template_name, **{**variables, **masked})
