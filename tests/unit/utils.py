import os

TEST_NAMESPACE = "csi-upgrade"
SHORT_TIMEOUT = 1

PVC_TEMPLATE_YAML = """---
apiVersion: v1
kind: PersistentVolumeClaim
metadata:
  name: rbd-pvc
spec:
  accessModes:
    - ReadWriteOnce
  resources:
    requests:
      storage: 1Gi
  storageClassName: csi-rbd-sc
"""

POD_TEMPLATE_YAML = """---
apiVersion: v1
kind: Pod
metadata:
  name: csi-rbd-demo-pod
spec:
  containers:
    - name: web-server
      image: docker.io/library/nginx:latest
      volumeMounts:
        - name: mypvc
          mountPath: /var/lib/www/html
  volumes:
    - name: mypvc
      persistentVolumeClaim:
        claimName: rbd-pvc
        readOnly: false
"""


def write_examples(source_dir, driver):
    examples_dir = os.path.join(source_dir, driver.examples_dir)
    os.makedirs(examples_dir, exist_ok=True)
    for file_name, content in (("pvc.yaml", PVC_TEMPLATE_YAML), ("pod.yaml", POD_TEMPLATE_YAML)):
        with open(os.path.join(examples_dir, file_name), "w") as fd:
            fd.write(content)
