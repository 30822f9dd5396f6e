# vessel

vessel is a small container runtime for Linux. A daemon, `vesseld`, does the
privileged work: it unpacks image layers, mounts an overlay filesystem for each
container, starts the container's process in new PID, UTS, mount and network
namespaces, puts it in a cgroup with CPU and memory limits and attaches it to
the `vessel0` bridge. The `vessel` command sends one JSON request per
connection to the daemon over the Unix socket `/run/vessel.sock` and prints
the reply.

## Requirements

- Linux with cgroup v2 mounted at `/sys/fs/cgroup` and overlayfs support
- root privileges for the daemon
- `ip`, `mount`, `umount`, `tar` and `wget` on the host's `PATH`
- a bridge named `vessel0` (with `10.0.0.1/24`) for container networking
- images whose root filesystem provides `mount`, `umount`, `ip`, `sh`, `awk`
  and `grep` (a busybox-based root filesystem such as Alpine's minirootfs
  does), since the container sets itself up with them after switching root

State is kept under `/var/lib/vessel`: containers in `containers/` (each with
`metadata.json`, `container.log` and its overlay directories), image manifests
in `images/<name>/manifest.json` and unpacked layers, named by the SHA-256 of
their archive, in `layers/`.

## Installing

```
pip install .
```

## Starting the daemon

```
sudo VESSEL_ROOTFS_URL=<url of a .tar.gz root filesystem> vesseld
```

`vesseld --socket PATH` listens on another path; the `vessel` client always
connects to `/run/vessel.sock`. `VESSEL_ROOTFS_URL` is only needed for
`vessel pull`: every pull downloads that archive with `wget`.

## Using the client

```
vessel pull alpine                 # download VESSEL_ROOTFS_URL as image "alpine"
vessel images                      # list stored images
vessel run alpine                  # start the image's default command (/bin/sh)
vessel run alpine echo hello       # start a given command; prints the container id
vessel ps                          # list containers with PID and state
vessel logs <id>                   # show the container's captured output
vessel stop <id>                   # SIGTERM, then SIGKILL after 3 seconds
vessel commit <id> myimage         # save a stopped container's changes as an image
vessel rm <id>                     # remove a stopped container
vessel build myimage ./context     # copy a directory onto alpine and commit it
```

`vessel build` takes the context directory as its second argument and defaults
to the current directory; it needs an image named `alpine`. Every image is
tagged `latest`. Containers get 2% of one CPU, a 100 MiB hard memory limit and
an 80 MiB soft limit, the hostname `vessel` and the address `10.0.0.2/24` with
`10.0.0.1` as the default route.

If the daemon reports an error, the client prints `Daemon error: ...` to
standard error and exits with status 1; it does the same when it cannot reach
the daemon or the build context does not exist.

## Using it as a library

- `vessel.api`: request and response dataclasses with `encode_request`,
  `decode_request`, `encode_response` and `decode_response`; malformed
  messages raise `ProtocolError`.
- `vessel.container`, `vessel.image`, `vessel.overlay`: container metadata,
  image manifests and layers, and overlay mounting; the storage functions take
  their root directories as optional arguments.
- `vessel.runtime`: `run`, `ps`, `stop`, `logs`, `rm`, `images`, `pull`,
  `commit` and `build`; failures raise `RuntimeError_` or the underlying
  `OSError`.
- `vessel.namespaces`: `spawn` and the cgroup and network set-up it uses.

## What it does not do

vessel does not talk to an image registry: `pull` fetches one plain root
filesystem archive from `VESSEL_ROOTFS_URL`. There are no image tags other than
`latest`, no build file format (a build only copies a directory), no port
publishing, volumes or per-container resource settings, and every container is
given the same IP address.

## Running the tests

```
pip install .[test]
pytest
```