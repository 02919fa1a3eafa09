"""

.. _provision:

kubestrap.provision
-------------------

The collaborators the bootstrap phases drive: the :class:`Host` running
commands and writing files, and one module per phase
(system preparation, containerd, kubeadm, Calico, monitoring agents).

:func:`kubestrap.provision.phases.build_phase_graph` assembles them into the
default :class:`kubestrap.orchestrate.graph.PhaseGraph`.
"""
