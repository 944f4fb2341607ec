"""
Launch plan construction.

This module ties port resolution, option merging and NIC synthesis together
and runs them for every VM of a configuration, collecting per-VM failures
instead of stopping at the first one.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Union

from .exceptions import ValidationError, VMManagerError
from .logging import logger
from .models import (
    NIC_KIND,
    ClaimedPorts,
    GlobalConfig,
    LaunchPlan,
    ResolutionReport,
    RunConfig,
    VmConfig,
    VmFailure,
)
from .nic import FALLBACK_NIC, NicSynthesizer
from .options import OptionMerger
from .ports import PortProbe, PortResolver


class LaunchPlanBuilder:
    """
    Resolves VM launch profiles into launch plans.

    Args:
        probe: Host port availability check, defaults to a bind probe
        fallback_nic: NIC used when ports exist but no ``-nic`` is configured;
            ``None`` turns that case into ``MissingNicModelError``

    Attributes:
        port_resolver (PortResolver): Assigns host ports
        option_merger (OptionMerger): Applies global option precedence
        nic_synthesizer (NicSynthesizer): Builds the single ``-nic`` directive
    """

    def __init__(
        self,
        probe: Optional[PortProbe] = None,
        fallback_nic: Optional[str] = FALLBACK_NIC,
    ) -> None:
        self.port_resolver = PortResolver(probe)
        self.option_merger = OptionMerger()
        self.nic_synthesizer = NicSynthesizer(fallback_nic)

    def build(
        self, global_config: GlobalConfig, vm: VmConfig, claimed: ClaimedPorts
    ) -> LaunchPlan:
        """
        Build the launch plan of a single VM.

        Raises:
            PortConflictError: If a host port cannot be assigned
            MissingNicModelError: If no NIC model is available
            ConfigValidationError: If the VM declares several ``-nic`` options
            ValidationError: If the resulting plan is inconsistent
        """
        resolved = self.port_resolver.resolve(vm.port_mappings, claimed, vm.image_name)
        try:
            merged = self.option_merger.merge(
                global_config.global_options, vm.options, vm.use_global_options
            )
            options = self.nic_synthesizer.synthesize(merged, resolved, image_name=vm.image_name)

            plan = LaunchPlan(
                image_name=vm.image_name,
                options=tuple(options),
                resolved_port_mappings=tuple(resolved),
                daemonize=vm.daemonize,
            )
            self.validate(plan, vm)
        except VMManagerError:
            # A failed VM must not keep ports away from its siblings.
            claimed.release(mapping.host_port_actual for mapping in resolved)
            raise
        logger.debug(
            f"Resolved launch plan for '{vm.image_name}'",
            image_name=vm.image_name,
            options=plan.option_strings(),
        )
        return plan

    @staticmethod
    def validate(plan: LaunchPlan, vm: VmConfig) -> None:
        if not plan.image_name or not plan.image_name.strip():
            raise ValidationError("image name must be non-empty", "image_name")

        if len(plan.resolved_port_mappings) != len(vm.port_mappings):
            raise ValidationError(
                f"resolved {len(plan.resolved_port_mappings)} port mappings "
                f"for {len(vm.port_mappings)} declared",
                "port_mappings",
            )

        nic_count = sum(1 for option in plan.options if option.kind == NIC_KIND)
        if nic_count > 1:
            raise ValidationError(
                f"{nic_count} '{NIC_KIND}' options in plan for '{plan.image_name}'",
                "nic",
            )

    def build_all(
        self,
        run_config: RunConfig,
        claimed: Optional[ClaimedPorts] = None,
        max_workers: int = 1,
    ) -> ResolutionReport:
        """
        Build plans for every VM of a run.

        VMs are attempted in declared order and all of them are attempted;
        failures are collected rather than raised. With ``max_workers`` above
        one, builds run on a thread pool and the order in which contested
        lenient ports are handed out is no longer fixed.

        Args:
            run_config: Loaded configuration
            claimed: Ports already taken in this run, a fresh set by default
            max_workers: Number of concurrent builds

        Returns:
            ResolutionReport: Plans and failures
        """
        claimed = claimed if claimed is not None else ClaimedPorts()
        report = ResolutionReport(failures=list(run_config.rejected))

        def attempt(vm: VmConfig) -> Union[LaunchPlan, VmFailure]:
            try:
                return self.build(run_config.global_config, vm, claimed)
            except VMManagerError as e:
                logger.error(
                    f"Failed to resolve VM '{vm.image_name}': {e.message}",
                    image_name=vm.image_name,
                    error_code=e.error_code,
                )
                return VmFailure(image_name=vm.image_name, error=e)

        outcomes: List[Union[LaunchPlan, VmFailure]]
        if max_workers > 1 and len(run_config.vms) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                outcomes = list(pool.map(attempt, run_config.vms))
        else:
            outcomes = [attempt(vm) for vm in run_config.vms]

        for outcome in outcomes:
            if isinstance(outcome, VmFailure):
                report.failures.append(outcome)
            else:
                report.plans.append(outcome)

        logger.info(
            f"Resolved {len(report.plans)} VM(s), {len(report.failures)} failure(s)",
            resolved=len(report.plans),
            failed=len(report.failures),
        )
        return report
