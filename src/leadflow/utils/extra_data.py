"""Textual company profile synthesized from registry (CNPJ) data.

Leads imported from the Receita Federal registry often have no website.
Their registry fields are rendered as a markdown document so that the
briefing and email prompts still have grounded content to work from.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import Lead

PLACEHOLDER_CONTACT = "Não informado"


@dataclass
class LeadExtraData:
    """Registry fields stored in ``Lead.extra_data``."""

    cnpj: str = ""
    razao_social: str = ""
    nome_fantasia: str = ""
    status: str = ""
    capital: str = ""
    founded_at: str = ""
    company_size: str = ""
    legal_nature: str = ""
    cnae_code: str = ""
    cnae_description: str = ""
    partners: list[str] = field(default_factory=list)
    secondary_activities: dict[str, Any] = field(default_factory=dict)
    mei_optante: bool = False
    simples_optante: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["LeadExtraData"]:
        if not data:
            return None

        def text(key: str) -> str:
            value = data.get(key)
            return "" if value is None else str(value).strip()

        partners = data.get("partners") or []
        secondary = data.get("secondary_activities") or {}
        return cls(
            cnpj=text("cnpj"),
            razao_social=text("razao_social"),
            nome_fantasia=text("nome_fantasia"),
            status=text("status"),
            capital=text("capital"),
            founded_at=text("founded_at"),
            company_size=text("company_size"),
            legal_nature=text("legal_nature"),
            cnae_code=text("cnae_code"),
            cnae_description=text("cnae_description"),
            partners=[str(p) for p in partners] if isinstance(partners, list) else [],
            secondary_activities=secondary if isinstance(secondary, dict) else {},
            mei_optante=bool(data.get("mei_optante")),
            simples_optante=bool(data.get("simples_optante")),
        )


def build_content_from_extra_data(lead: Lead) -> str:
    """Render a lead's registry data as Portuguese markdown.

    Returns an empty string when the lead carries no registry data.
    """
    extra = LeadExtraData.from_dict(lead.extra_data)
    if extra is None:
        return ""

    lines = ["# Informações da Empresa (Dados da Receita Federal)", ""]

    if extra.razao_social:
        lines.append(f"**Razão Social**: {extra.razao_social}")
    if extra.nome_fantasia:
        lines.append(f"**Nome Fantasia**: {extra.nome_fantasia}")
    if extra.cnpj:
        lines.append(f"**CNPJ**: {extra.cnpj}")

    lines += ["", "## Atividade Principal"]
    if extra.cnae_description:
        lines.append(f"**Descrição**: {extra.cnae_description}")
    if extra.cnae_code:
        lines.append(f"**Código CNAE**: {extra.cnae_code}")

    descriptions = extra.secondary_activities.get("descriptions")
    if isinstance(descriptions, list):
        items = [d for d in descriptions if isinstance(d, str)]
        if items:
            lines += ["", "## Atividades Secundárias"]
            lines += [f"- {d}" for d in items]

    lines += ["", "## Dados da Empresa"]
    if extra.legal_nature:
        lines.append(f"**Natureza Jurídica**: {extra.legal_nature}")
    if extra.company_size:
        lines.append(f"**Porte**: {extra.company_size}")
    if extra.capital and extra.capital != "0":
        lines.append(f"**Capital Social**: R$ {extra.capital}")
    if extra.founded_at:
        lines.append(f"**Data de Fundação**: {extra.founded_at}")
    if extra.status:
        lines.append(f"**Situação Cadastral**: {extra.status}")
    if extra.simples_optante:
        lines.append("**Optante pelo Simples**: Sim")
    if extra.mei_optante:
        lines.append("**MEI**: Sim")

    if extra.partners:
        lines += ["", "## Sócios/Proprietários"]
        lines += [f"- {p}" for p in extra.partners]

    lines += ["", "## Informações de Contato"]
    if lead.contact_name and lead.contact_name != PLACEHOLDER_CONTACT:
        contact = f"**Contato**: {lead.contact_name}"
        if lead.contact_role:
            contact += f" ({lead.contact_role})"
        lines.append(contact)
    if lead.emails:
        lines.append(f"**E-mails**: {', '.join(lead.emails)}")
    if lead.phones:
        lines.append(f"**Telefones**: {', '.join(lead.phones)}")
    if lead.address:
        lines.append(f"**Endereço**: {lead.address}")

    return "\n".join(lines) + "\n"
