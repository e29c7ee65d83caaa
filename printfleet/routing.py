"""
Role-based routing for print jobs.

Maps a printer role (cashier, kitchen, bar, ...) to the physical printers
that should receive the job. The POS sends a role, the server picks printers.
"""

from dataclasses import dataclass, field
from typing import Optional

from printfleet.printers.base import DocumentType, PrinterDevice, PrinterRole
from printfleet.printers.registry import PrinterRegistry


@dataclass
class RouteConfig:
    printer_ids: list[str] = field(default_factory=list)
    description: str = ""


class PrintRouter:
    """
    Routes roles to printers.

    Config example:
        routing:
          kitchen: kitchen-1
          bar: [bar-1, bar-2]

    Or with descriptions:
        routing:
          kitchen:
            printers: [kitchen-1, kitchen-2]
            description: "Hot and cold line tickets"

    Roles without an explicit route resolve to every registered printer with
    that role.
    """

    def __init__(self, registry: PrinterRegistry):
        self.registry = registry
        self._routes: dict[PrinterRole, RouteConfig] = {}

    def load_config(self, config: dict) -> None:
        """Load routing configuration."""
        routing = config.get("routing", {}) or {}

        for role_name, target in routing.items():
            role = PrinterRole(role_name)
            if isinstance(target, str):
                self._routes[role] = RouteConfig(printer_ids=[target])
            elif isinstance(target, list):
                self._routes[role] = RouteConfig(printer_ids=[str(t) for t in target])
            elif isinstance(target, dict):
                printers = target.get("printers", target.get("printer", []))
                if isinstance(printers, str):
                    printers = [printers]
                self._routes[role] = RouteConfig(
                    printer_ids=list(printers),
                    description=target.get("description", ""),
                )

    def resolve(self, role: PrinterRole) -> list[PrinterDevice]:
        """Printers for a role: explicit route first, then registry roles."""
        route = self._routes.get(role)
        if route:
            return [p for p in (self.registry.get(pid) for pid in route.printer_ids) if p is not None]
        return self.registry.by_role(role)

    def resolve_or_default(self, role: PrinterRole, document_type: Optional[DocumentType]) -> list[PrinterDevice]:
        """
        Resolve a role, falling back to printers that accept the document type.
        """
        resolved = self.resolve(role)
        if resolved:
            return resolved

        if document_type is None:
            return self.registry.by_role(PrinterRole.GENERAL)
        return [p for p in self.registry.list_all() if p.supports(document_type)]

    def list_routes(self) -> dict[str, dict]:
        """List all configured routes for API discovery."""
        return {
            role.value: {
                "printer_ids": route.printer_ids,
                "description": route.description,
            }
            for role, route in self._routes.items()
        }

    def add_route(self, role: PrinterRole, printer_ids: list[str], description: str = "") -> None:
        """Programmatically add a route (useful for testing)."""
        self._routes[role] = RouteConfig(printer_ids=list(printer_ids), description=description)
