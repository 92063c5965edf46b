"""
Prompt templates for the case-processing assistants.

All prompts are in Spanish because the assistants, the client-facing copy and
the specialty catalogue are Spanish.
"""

from __future__ import annotations

VALID_SPECIALTIES = [
    "Derecho Civil",
    "Derecho Penal",
    "Derecho Laboral",
    "Derecho Mercantil",
    "Derecho Administrativo",
    "Derecho Fiscal",
    "Derecho Familiar",
    "Derecho Inmobiliario",
    "Derecho de Extranjería",
    "Derecho de la Seguridad Social",
    "Derecho Sanitario",
    "Derecho de Seguros",
    "Derecho Concursal",
    "Derecho de Propiedad Intelectual",
    "Derecho Ambiental",
    "Consulta General",
]

EXTRACTION_SYSTEM_PROMPT = (
    "Eres un asistente legal experto en extraer información estructurada de "
    "consultas legales. Responde ÚNICAMENTE con JSON válido sin bloques de código markdown."
)

SUMMARY_SYSTEM_PROMPT = (
    "Eres un asistente legal experto en analizar consultas legales y generar "
    "resúmenes profesionales para abogados."
)


def build_extraction_prompt(case_text: str) -> str:
    return f"""
Analiza el siguiente texto que contiene información de un cliente y su consulta legal.
Extrae los datos y devuelve ÚNICAMENTE un JSON válido con la siguiente estructura:

{{
  "cliente": {{
    "nombre": "string",
    "apellido": "string",
    "email": "string",
    "telefono": "string",
    "ciudad": "string",
    "tipo_perfil": "individual" | "empresa",
    "razon_social": "string (solo si es empresa)",
    "nif_cif": "string (solo si es empresa)",
    "nombre_gerente": "string (solo si es empresa)",
    "direccion_fiscal": "string (solo si es empresa)"
  }},
  "consulta": {{
    "motivo_consulta": "string (resumen del problema legal)",
    "detalles_adicionales": "string (información adicional relevante)",
    "urgencia": "alta" | "media" | "baja",
    "preferencia_horaria": "string (si se menciona)",
    "especialidad_legal": "laboral" | "civil" | "penal" | "administrativo" | "fiscal" | "mercantil" | "familia" | "otra",
    "tipo_lead": "estandar" | "premium" | "urgente"
  }}
}}

Si no puedes extraer algún campo, usa null.
Si es una empresa, marca tipo_perfil como "empresa"; si es una persona, como "individual".

Texto a analizar:
{case_text}
"""


def build_summary_prompt(extracted: dict, original_text: str) -> str:
    cliente = extracted.get("cliente") or {}
    consulta = extracted.get("consulta") or {}
    nombre = " ".join(
        part for part in (cliente.get("nombre"), cliente.get("apellido")) if part
    ) or "No especificado"
    return f"""
Analiza la siguiente consulta legal y genera un resumen profesional del caso:

Información del cliente:
- Nombre: {nombre}
- Tipo: {cliente.get("tipo_perfil") or "individual"}
- Ciudad: {cliente.get("ciudad") or "No especificada"}

Consulta legal:
{consulta.get("motivo_consulta") or "Sin detalles específicos"}

Detalles adicionales:
{consulta.get("detalles_adicionales") or "No especificados"}

Texto original:
{original_text}

Genera un resumen profesional que incluya la descripción del problema legal,
los hechos relevantes y las posibles áreas del derecho involucradas.
"""


def build_guide_prompt(case_summary: str) -> str:
    return (
        "Genera una guía técnica para un abogado a partir del siguiente resumen: "
        f"{case_summary}"
    )


def build_classifier_prompt(case_summary: str) -> str:
    specialties = ", ".join(VALID_SPECIALTIES)
    return (
        "Analiza el resumen y devuelve ÚNICAMENTE un objeto JSON crudo (raw), sin explicaciones. "
        'La estructura debe ser: {"motivo_consulta_ia": "...", "especialidad_nombre": "...", '
        '"tipo_lead": "...", "valor_estimado": "..."}. '
        "- Para 'motivo_consulta_ia', crea un titular de caso conciso y profesional, máximo 20 palabras. "
        f"- Para 'especialidad_nombre', DEBES elegir uno de la lista: [{specialties}]. "
        "Si no encaja claramente en ninguna, usa 'Consulta General'. "
        "- Para 'tipo_lead', DEBES elegir uno de estos tres valores exactos: 'estandar', 'premium', 'urgente'. "
        "Un lead es 'premium' si el caso es claro y de alto potencial; 'urgente' si requiere "
        "acción inmediata; 'estandar' en los demás casos. "
        "- Para 'valor_estimado', da una estimación en euros como texto (ej: \"1.500€ - 3.000€\"). "
        f"Resumen del caso: {case_summary}"
    )


def build_proposal_prompt(case_summary: str, client_name: str | None) -> str:
    return (
        "Analiza el resumen y genera un contenido de propuesta para el cliente. "
        f"Su nombre es {client_name or 'cliente'}. Tu respuesta debe ser ÚNICAMENTE un objeto "
        'JSON crudo (raw) con la estructura: {"titulo_personalizado": "...", '
        '"subtitulo_refuerzo": "...", "etiqueta_caso": "..."}. '
        '- "titulo_personalizado": título corto y potente, usando el nombre del cliente. '
        '- "subtitulo_refuerzo": una o dos frases que demuestren que entendimos su punto fuerte. '
        '- "etiqueta_caso": etiqueta muy corta de 2-3 palabras para el caso. '
        f"Resumen: {case_summary}"
    )
